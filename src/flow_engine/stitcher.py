"""Graph stitching: activity edges and per-activity transfer code derived from links."""
from __future__ import annotations

import ast
import logging
import textwrap
from dataclasses import dataclass, field
from typing import List, Optional

from .activities import Activity
from .errors import StitchError
from .models import Flow

logger = logging.getLogger(__name__)

DESTINATION_TOKEN = "destination"
SOURCE_TOKEN = "source"
TRANSFER_FUNCTION = "transfer"


@dataclass
class LinkStatement:
    """The transfer statement contributed by one incoming link."""

    source: str
    destination: str
    code: str


@dataclass
class TransferCode:
    """Combined transfer statements of an activity, callable as ``transfer(activity, variables, flow)``."""

    statements: List[LinkStatement] = field(default_factory=list)

    @property
    def source(self) -> str:
        lines = [f"def {TRANSFER_FUNCTION}(activity, variables, flow):"]
        for statement in self.statements:
            lines.append(f"    # link: {statement.source} => {statement.destination}")
            lines.extend("    " + line for line in statement.code.splitlines())
        return "\n".join(lines)

    def invocation(self) -> str:
        return f"{self.source}\n\n{TRANSFER_FUNCTION}(activity, variables, flow)\n"


@dataclass
class StitchProblem:
    """A stitching failure confined to one activity."""

    ref: str
    piece: str
    message: str

    def __str__(self) -> str:
        return f"Problem in {self.piece} for activity {self.ref}:\n{self.message}"


class _LinkBinder(ast.NodeTransformer):
    """Binds the destination and source tokens of a link expression."""

    def __init__(self, source: Activity) -> None:
        self.source = source

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if node.id == DESTINATION_TOKEN:
            return ast.copy_location(ast.Name(id="activity", ctx=node.ctx), node)
        if node.id == SOURCE_TOKEN:
            if not isinstance(node.ctx, ast.Load):
                raise ValueError("the source activity of a link cannot be reassigned")
            lookup = ast.Call(
                func=ast.Attribute(
                    value=ast.Name(id="flow", ctx=ast.Load()),
                    attr="get_activity",
                    ctx=ast.Load(),
                ),
                args=[ast.Constant(self.source.ref), ast.Constant(self.source.kind)],
                keywords=[],
            )
            return ast.copy_location(lookup, node)
        return node


class GraphStitcher:
    """Computes previous/next sets and transfer code for every activity of a flow."""

    def stitch(self, flow: Flow) -> List[StitchProblem]:
        problems: List[StitchProblem] = []

        for activity in flow.activities:
            try:
                activity.previous = self.previous_of(activity, flow)
            except Exception as exc:
                activity.previous = []
                problems.append(self._problem(activity, "previous activity selection", exc))

        for activity in flow.activities:
            try:
                activity.next = [a for a in flow.activities if activity in a.previous]
            except Exception as exc:
                activity.next = []
                problems.append(self._problem(activity, "next activity selection", exc))

            try:
                activity.assign_code = self.build_assign(activity, flow)
            except Exception as exc:
                activity.assign_code = None
                problems.append(self._problem(activity, "one or more links", exc))

        return problems

    def previous_of(self, activity: Activity, flow: Flow) -> List[Activity]:
        sources = {link.source for link in flow.links_into(activity.ref)}
        return [a for a in flow.activities if a.ref in sources]

    def build_assign(self, activity: Activity, flow: Flow) -> Optional[TransferCode]:
        statements = []
        for source in activity.previous:
            link = next(
                candidate
                for candidate in flow.links
                if candidate.source == source.ref and candidate.destination == activity.ref
            )
            if not (link.expression or "").strip():
                continue
            try:
                code = self.bind_expression(link.expression, source)
            except (SyntaxError, ValueError) as exc:
                raise StitchError(
                    activity.ref, f"link {source.ref} => {activity.ref}", str(exc)
                ) from exc
            statements.append(LinkStatement(source=source.ref, destination=activity.ref, code=code))
        return TransferCode(statements) if statements else None

    def bind_expression(self, expression: str, source: Activity) -> str:
        tree = ast.parse(textwrap.dedent(expression).strip(), mode="exec")
        tree = ast.fix_missing_locations(_LinkBinder(source).visit(tree))
        return ast.unparse(tree)

    def _problem(self, activity: Activity, piece: str, exc: Exception) -> StitchProblem:
        logger.error("Problem in %s for activity %s: %s", piece, activity.ref, exc, exc_info=True)
        return StitchProblem(ref=activity.ref, piece=piece, message=f"{type(exc).__name__}: {exc}")
