"""
Test cases for the NEMO finite-volume core.

Run tests with pytest:
    pytest nemo/tests/ -v

Or run individual test files:
    pytest nemo/tests/test_flux.py -v
    pytest nemo/tests/test_solver.py -v
"""
