"""
Deferred build nodes, the dependency graph that connects them, and an
executor that runs them in dependency order.

Defining a pipeline never runs anything: nodes only describe work. The
executor decides when each node runs, subject to the declared edges.
"""
import enum
import logging
import subprocess
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import networkx as nx

from apkbuild.errors import (
    ApkBuildError,
    CommandFailedError,
    ConfigurationError,
    ToolchainError,
    TransientIOError,
)

logger = logging.getLogger(__name__)


def run_command(cmd: Sequence[str], cwd: Optional[str] = None) -> str:
    """
    Executes an external command, logs it, and raises on failure.
    Args:
        cmd (list): The command and its arguments as a list.
        cwd (str, optional): The working directory for the command.
    Returns:
        str: The captured stdout.
    Raises:
        ToolchainError: If the binary cannot be found or started.
        CommandFailedError: If the command returns a non-zero exit code.
    """
    logger.info("Executing command: %s", " ".join(cmd))
    try:
        result = subprocess.run(list(cmd), cwd=cwd, text=True, errors="replace", capture_output=True)
    except FileNotFoundError as e:
        raise ToolchainError(f"Command not found. Make sure '{cmd[0]}' is in your PATH or correctly specified.") from e
    except PermissionError as e:
        raise ToolchainError(f"Command '{cmd[0]}' is not executable: {e}") from e

    if result.returncode != 0:
        logger.error("Command failed with status %d: %s", result.returncode, " ".join(cmd))
        if result.stdout:
            logger.error("Stdout:\n%s", result.stdout)
        if result.stderr:
            logger.error("Stderr:\n%s", result.stderr)
        raise CommandFailedError(cmd, result.returncode, result.stdout, result.stderr)

    if result.stdout:
        logger.debug(result.stdout)
    if result.stderr:
        logger.debug(result.stderr)
    return result.stdout


class NodeStatus(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class NodeResult:
    node: "BuildNode"
    status: NodeStatus
    kind: Optional[str] = None
    message: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is NodeStatus.SUCCESS


class BuildNode:
    """
    A unit of deferred work.

    Subclasses implement make() and signal failure by raising an ApkBuildError.
    The name is only used for logging; two nodes with the same name are
    still distinct nodes.
    """

    def __init__(self, name: str):
        self.name = name

    def make(self) -> None:
        raise NotImplementedError

    def run(self) -> NodeResult:
        """Runs the node once and converts any failure into a NodeResult."""
        logger.debug("Running node %s", self.name)
        try:
            self.make()
        except ApkBuildError as e:
            return NodeResult(self, NodeStatus.FAILED, e.kind, str(e))
        except OSError as e:
            return NodeResult(self, NodeStatus.FAILED, TransientIOError.kind, str(e))
        except Exception as e:
            logger.exception("Unexpected error in node %s", self.name)
            return NodeResult(self, NodeStatus.FAILED, ApkBuildError.kind, f"{type(e).__name__}: {e}")
        return NodeResult(self, NodeStatus.SUCCESS)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class CommandNode(BuildNode):
    """Runs an external process. Any non-zero exit status fails the node."""

    def __init__(self, name: str, cmd: Sequence[str], cwd: Optional[str] = None):
        super().__init__(name)
        self.cmd = list(cmd)
        self.cwd = cwd

    def make(self) -> None:
        run_command(self.cmd, cwd=self.cwd)


class BuildGraph:
    """A directed acyclic graph of build nodes. An edge a -> b means a must finish before b starts."""

    def __init__(self):
        self._graph = nx.DiGraph()
        self._counter = 0

    def add(self, node: BuildNode, depends_on: Iterable[BuildNode] = ()) -> BuildNode:
        if node not in self._graph:
            self._graph.add_node(node, index=self._counter)
            self._counter += 1
        self.depend(node, *depends_on)
        return node

    def depend(self, node: BuildNode, *prerequisites: BuildNode) -> None:
        """Declares that node must run after every one of prerequisites."""
        for prerequisite in prerequisites:
            if prerequisite not in self._graph:
                self.add(prerequisite)
            if node not in self._graph:
                self.add(node)
            if prerequisite is node or nx.has_path(self._graph, node, prerequisite):
                raise ConfigurationError(f"Dependency {prerequisite.name} -> {node.name} would create a cycle")
            self._graph.add_edge(prerequisite, node)

    def __contains__(self, node) -> bool:
        return node in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def nodes(self) -> List[BuildNode]:
        return sorted(self._graph.nodes, key=self._index)

    def dependencies(self, node: BuildNode) -> List[BuildNode]:
        return sorted(self._graph.predecessors(node), key=self._index)

    def dependents(self, node: BuildNode) -> List[BuildNode]:
        return sorted(self._graph.successors(node), key=self._index)

    def depends_on(self, node: BuildNode, prerequisite: BuildNode) -> bool:
        """True if prerequisite is reachable backwards from node, directly or transitively."""
        return node is not prerequisite and nx.has_path(self._graph, prerequisite, node)

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)

    def order(self, target: Optional[BuildNode] = None) -> List[BuildNode]:
        """Returns the nodes needed for target (or all nodes) in a stable topological order."""
        graph = self._graph
        if target is not None:
            if target not in graph:
                raise ConfigurationError(f"{target!r} is not part of this graph")
            graph = graph.subgraph(nx.ancestors(graph, target) | {target})
        return list(nx.lexicographical_topological_sort(graph, key=self._index))

    def _index(self, node: BuildNode) -> int:
        return self._graph.nodes[node]["index"]


@dataclass
class ExecutionReport:
    results: List[NodeResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> Optional[NodeResult]:
        for r in self.results:
            if r.status is NodeStatus.FAILED:
                return r
        return None

    def result_for(self, node: BuildNode) -> Optional[NodeResult]:
        for r in self.results:
            if r.node is node:
                return r
        return None

    def ran(self, node: BuildNode) -> bool:
        r = self.result_for(node)
        return r is not None and r.status is not NodeStatus.SKIPPED


def _run_with_retries(node: BuildNode, retries: int) -> NodeResult:
    attempt = 0
    while True:
        attempt += 1
        result = node.run()
        if result.kind == TransientIOError.kind and attempt <= retries:
            logger.warning("Node %s failed with a transient I/O error (%s), retrying (%d/%d)",
                           node.name, result.message, attempt, retries)
            continue
        return NodeResult(result.node, result.status, result.kind, result.message, attempt)


def execute(graph: BuildGraph, target: Optional[BuildNode] = None, jobs: int = 1, retries: int = 0) -> ExecutionReport:
    """
    Runs target and everything it depends on (or the whole graph).

    Nothing new is started after the first failure. Nodes that never ran are
    reported as skipped. Transient I/O failures are retried up to retries times.
    """
    if jobs < 1:
        raise ConfigurationError(f"jobs must be at least 1, got {jobs}")
    if retries < 0:
        raise ConfigurationError(f"retries must not be negative, got {retries}")

    order = graph.order(target)
    report = ExecutionReport()
    if jobs == 1:
        failed = False
        for node in order:
            if failed:
                report.results.append(NodeResult(node, NodeStatus.SKIPPED))
                continue
            result = _run_with_retries(node, retries)
            report.results.append(result)
            if not result.ok:
                logger.error("Node %s failed: %s", node.name, result.message)
                failed = True
        return report

    wanted = set(order)
    pending: Dict[BuildNode, int] = {
        node: sum(1 for dep in graph.dependencies(node) if dep in wanted) for node in order
    }
    ready = [node for node in order if pending[node] == 0]
    finished = set()
    failed = False
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        running = {}
        while ready or running:
            while ready and not failed:
                node = ready.pop(0)
                running[pool.submit(_run_with_retries, node, retries)] = node
            if not running:
                break
            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                node = running.pop(future)
                result = future.result()
                report.results.append(result)
                finished.add(node)
                if not result.ok:
                    logger.error("Node %s failed: %s", node.name, result.message)
                    failed = True
                    continue
                for dependent in graph.dependents(node):
                    if dependent in wanted:
                        pending[dependent] -= 1
                        if pending[dependent] == 0:
                            ready.append(dependent)
            ready.sort(key=order.index)

    for node in order:
        if node not in finished:
            report.results.append(NodeResult(node, NodeStatus.SKIPPED))
    return report
