"""
Process context: rank identity, collectives, halo exchange and fatal errors.

The serial context is the default. ``MPIContext`` wraps an mpi4py
communicator and is only constructed when running under MPI.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List

import numpy as np

log = logging.getLogger(__name__)


class SolverError(RuntimeError):
    """Fatal solver condition (unsupported feature, restart mismatch, ...)."""


class HaloExchange:
    """Pending halo exchange started by ``initiate_comms``."""

    def __init__(self, array: np.ndarray, requests: List, recv_buffers: Dict):
        self.array = array
        self.requests = requests
        # neighbor rank -> (local halo indices, receive buffer)
        self.recv_buffers = recv_buffers


class ProcessContext(ABC):
    """Rank identity and collective operations shared by all components."""

    rank: int = 0
    size: int = 1

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    @abstractmethod
    def allreduce(self, value, op: str = 'sum'):
        """Reduce ``value`` ('sum', 'min' or 'max') onto every rank."""

    @abstractmethod
    def reduce(self, value, op: str = 'sum', root: int = 0):
        """Reduce ``value`` onto ``root``; other ranks receive None."""

    @abstractmethod
    def bcast(self, value, root: int = 0):
        """Broadcast ``value`` from ``root``."""

    @abstractmethod
    def initiate_comms(self, mesh, array: np.ndarray) -> HaloExchange:
        """Start exchanging the halo columns of ``array`` (n_comp, n_points)."""

    @abstractmethod
    def complete_comms(self, exchange: HaloExchange) -> None:
        """Wait for the exchange and write received values into the halo."""

    @abstractmethod
    def error(self, message: str, function_name: str):
        """Report a fatal error and stop the whole process group."""

    def exchange(self, mesh, array: np.ndarray) -> None:
        self.complete_comms(self.initiate_comms(mesh, array))

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SerialContext(ProcessContext):
    """Single-process context: collectives are identities, halos are empty."""

    def allreduce(self, value, op: str = 'sum'):
        return value

    def reduce(self, value, op: str = 'sum', root: int = 0):
        return value

    def bcast(self, value, root: int = 0):
        return value

    def initiate_comms(self, mesh, array: np.ndarray) -> HaloExchange:
        return HaloExchange(array, [], {})

    def complete_comms(self, exchange: HaloExchange) -> None:
        pass

    def error(self, message: str, function_name: str):
        log.critical("Error in \"%s\": %s", function_name, message)
        raise SolverError(f"{function_name}: {message}")


class MPIContext(ProcessContext):
    """
    Context backed by an mpi4py communicator.

    Fatal errors use a bounded-time rendezvous: a non-blocking barrier tells
    whether every rank called ``error``; if not, a one-sided window holding
    each rank's id is queried so that only the lowest erroring rank prints
    before the group aborts.
    """

    ERROR_TIMEOUT = 1.0

    def __init__(self, comm=None):
        from mpi4py import MPI

        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self._ops = {'sum': MPI.SUM, 'min': MPI.MIN, 'max': MPI.MAX,
                     'lor': MPI.LOR}

        # Ranks not in an error state keep size here so min() ignores them.
        self._error_rank = np.array([self.size], dtype='i')
        self._window = MPI.Win.Create(self._error_rank, comm=self.comm)

    def _op(self, op: str):
        try:
            return self._ops[op]
        except KeyError:
            raise ValueError(f"Unknown reduction: {op}. Options: {list(self._ops)}")

    def allreduce(self, value, op: str = 'sum'):
        if isinstance(value, np.ndarray):
            out = np.empty_like(value)
            self.comm.Allreduce(np.ascontiguousarray(value), out, op=self._op(op))
            return out
        return self.comm.allreduce(value, op=self._op(op))

    def reduce(self, value, op: str = 'sum', root: int = 0):
        return self.comm.reduce(value, op=self._op(op), root=root)

    def bcast(self, value, root: int = 0):
        return self.comm.bcast(value, root=root)

    def initiate_comms(self, mesh, array: np.ndarray) -> HaloExchange:
        n_comp = array.shape[0]
        requests = []
        recv_buffers = {}
        for neighbor, indices in mesh.halo_recv.items():
            buf = np.empty((n_comp, len(indices)), dtype=array.dtype)
            recv_buffers[neighbor] = (indices, buf)
            requests.append(self.comm.Irecv(buf, source=neighbor, tag=neighbor))
        for neighbor, indices in mesh.halo_send.items():
            buf = np.ascontiguousarray(array[:, indices])
            requests.append(self.comm.Isend(buf, dest=neighbor, tag=self.rank))
        return HaloExchange(array, requests, recv_buffers)

    def complete_comms(self, exchange: HaloExchange) -> None:
        self._MPI.Request.Waitall(exchange.requests)
        for indices, buf in exchange.recv_buffers.values():
            exchange.array[:, indices] = buf

    def error(self, message: str, function_name: str):
        MPI = self._MPI
        request = self.comm.Ibarrier()
        start = time.monotonic()
        collective = request.Test()
        while not collective and time.monotonic() - start < self.ERROR_TIMEOUT:
            time.sleep(0.01)
            collective = request.Test()

        if collective:
            min_rank = 0
        else:
            self._error_rank[0] = self.rank
            min_rank = self.rank
            other = np.empty(1, dtype='i')
            for target in range(self.rank):
                self._window.Lock(target, MPI.LOCK_SHARED)
                self._window.Get(other, target_rank=target)
                self._window.Unlock(target)
                min_rank = min(min_rank, int(other[0]))

        if self.rank == min_rank:
            log.critical("Error in \"%s\": %s", function_name, message)
        self.comm.Abort(1)

    def close(self) -> None:
        if self._window is not None:
            self._window.Free()
            self._window = None
