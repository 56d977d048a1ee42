"""
Transports to the Cluster.

============================================================
PURPOSE
============================================================
Adapters for the two external interfaces the harness needs:

1. RemoteExecutor: runs administrative shell commands on a node
2. ManagementClient: reads management attributes of a node

Concrete implementations talk SSH (paramiko) and JMX-over-HTTP
(Jolokia, aiohttp). Mock implementations are provided for tests
and dry runs.

============================================================
"""

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import paramiko

from .exceptions import ManagementQueryError, RemoteCommandError


logger = logging.getLogger(__name__)


STORAGE_SERVICE_MBEAN = "org.apache.cassandra.db:type=StorageService"


# ============================================================
# ABSTRACT ADAPTERS
# ============================================================

class RemoteExecutor(ABC):
    """Executes shell commands on cluster nodes."""

    @abstractmethod
    async def execute(self, node: str, command: str, sudo: bool = False) -> str:
        """
        Run a shell command on a node.

        Returns stdout. Raises RemoteCommandError on a non-zero exit
        status or a transport failure.
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass


class ManagementClient(ABC):
    """Reads management attributes from a node."""

    @abstractmethod
    async def read_attribute(self, node: str, attribute: str) -> List[str]:
        """
        Read a list-valued StorageService attribute from one node.

        Raises ManagementQueryError when the node cannot be queried.
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass


# ============================================================
# SSH EXECUTOR
# ============================================================

class SSHRemoteExecutor(RemoteExecutor):
    """
    Runs commands over SSH with paramiko.

    paramiko is blocking, so each command runs in a worker thread
    on its own connection.
    """

    def __init__(
        self,
        username: str = "root",
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: float = 10.0,
    ):
        self._username = username
        self._key_path = key_path
        self._port = port
        self._connect_timeout = connect_timeout

    async def execute(self, node: str, command: str, sudo: bool = False) -> str:
        if sudo and self._username != "root":
            command = f"sudo -n sh -c {shlex.quote(command)}"
        return await asyncio.to_thread(self._run, node, command)

    def _run(self, node: str, command: str) -> str:
        logger.debug(f"({node}) {command}")
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                node,
                username=self._username,
                port=self._port,
                key_filename=self._key_path,
                timeout=self._connect_timeout,
            )
            _, stdout, stderr = client.exec_command(command)
            out = stdout.read().decode()
            err = stderr.read().decode()
            status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteCommandError(
                node, [command], message="SSH transport failed", cause=e
            ) from e
        finally:
            client.close()

        if err:
            logger.debug(f"({node}) stderr: {err.strip()}")
        if status != 0:
            raise RemoteCommandError(
                node,
                [command],
                message=f"exited with status {status}",
                exit_status=status,
                output=err or out,
            )
        return out.strip()


# ============================================================
# JOLOKIA MANAGEMENT CLIENT
# ============================================================

class JolokiaManagementClient(ManagementClient):
    """
    Reads JMX attributes through a Jolokia agent over HTTP.

    Each node runs the agent on the same well-known port.
    """

    def __init__(
        self,
        port: int = 8778,
        mbean: str = STORAGE_SERVICE_MBEAN,
        timeout_seconds: float = 10.0,
    ):
        self._port = port
        self._mbean = mbean
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def url_for(self, node: str, attribute: str) -> str:
        return f"http://{node}:{self._port}/jolokia/read/{self._mbean}/{attribute}"

    async def read_attribute(self, node: str, attribute: str) -> List[str]:
        session = await self._get_session()
        try:
            async with session.get(self.url_for(node, attribute)) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ManagementQueryError(node, attribute, cause=e) from e

        if not isinstance(payload, dict):
            raise ManagementQueryError(
                node, attribute, message="Malformed Jolokia reply"
            )
        if payload.get("status") != 200:
            raise ManagementQueryError(
                node, attribute, message=payload.get("error", "Jolokia error")
            )

        value = payload.get("value") or []
        if not isinstance(value, list):
            raise ManagementQueryError(
                node, attribute, message=f"Expected a list, got {type(value).__name__}"
            )
        return list(value)


# ============================================================
# MOCK IMPLEMENTATIONS
# ============================================================

ScriptedResult = Any  # str, Exception, list of those, or a callable


class MockRemoteExecutor(RemoteExecutor):
    """
    Records commands and returns scripted output.

    Responses are matched by substring against the command, first
    registered pattern wins. A list response is consumed one item
    per call (the last item repeats). Callables receive the node.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self._responses: List[Tuple[str, ScriptedResult]] = []
        self.closed = False

    def set_response(self, pattern: str, result: ScriptedResult) -> None:
        self._responses.append((pattern, result))

    def commands_for(self, node: str) -> List[str]:
        return [cmd for n, cmd in self.calls if n == node]

    def nodes_running(self, fragment: str) -> List[str]:
        """Nodes that received a command containing the fragment, in order."""
        return [n for n, cmd in self.calls if fragment in cmd]

    async def execute(self, node: str, command: str, sudo: bool = False) -> str:
        self.calls.append((node, command))
        logger.debug(f"[MOCK] ({node}) {command}")

        for pattern, result in self._responses:
            if pattern in command:
                return self._resolve(node, command, result)
        return ""

    def _resolve(self, node: str, command: str, result: ScriptedResult) -> str:
        if isinstance(result, list):
            item = result.pop(0) if len(result) > 1 else result[0]
            return self._resolve(node, command, item)
        if callable(result):
            return self._resolve(node, command, result(node))
        if isinstance(result, Exception):
            raise RemoteCommandError(node, [command], cause=result)
        return result

    async def close(self) -> None:
        self.closed = True


class MockManagementClient(ManagementClient):
    """
    Serves scripted attribute values per node.

    Unscripted nodes fail their queries, like a node whose
    management port is unreachable.
    """

    def __init__(self):
        self.queries: List[Tuple[str, str]] = []
        self._values: Dict[Tuple[str, str], Any] = {}
        self.closed = False

    def set_attribute(self, node: str, attribute: str, value: Any) -> None:
        """Value may be a list of addresses, an Exception or a callable."""
        self._values[(node, attribute)] = value

    def set_live_nodes(self, node: str, addresses: Any) -> None:
        self.set_attribute(node, "LiveNodes", addresses)

    def set_joining_nodes(self, node: str, addresses: Any) -> None:
        self.set_attribute(node, "JoiningNodes", addresses)

    async def read_attribute(self, node: str, attribute: str) -> List[str]:
        self.queries.append((node, attribute))
        value = self._values.get((node, attribute))

        if callable(value):
            value = value()
        if value is None:
            raise ManagementQueryError(node, attribute, message="Connection refused")
        if isinstance(value, Exception):
            raise ManagementQueryError(node, attribute, cause=value)
        return list(value)

    async def close(self) -> None:
        self.closed = True
