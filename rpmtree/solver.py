"""Boolean formulas, their CNF encoding and a small partial weighted MaxSAT solver."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

Clause = list[int]


class Formula:
    """Base class of boolean formulas."""

    def __and__(self, other: Formula) -> Formula:
        return And(self, other)

    def __or__(self, other: Formula) -> Formula:
        return Or(self, other)

    def __invert__(self) -> Formula:
        return Not(self)


class Var(Formula):
    """A named boolean variable."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Var) and other.name == self.name

    def __hash__(self) -> int:
        return hash(("var", self.name))

    def __repr__(self) -> str:
        return self.name


class Not(Formula):
    """Negation of a formula."""

    __slots__ = ("operand",)

    def __init__(self, operand: Formula) -> None:
        self.operand = operand

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Not) and other.operand == self.operand

    def __hash__(self) -> int:
        return hash(("not", self.operand))

    def __repr__(self) -> str:
        return f"not({self.operand!r})"


class _Nary(Formula):
    __slots__ = ("operands",)
    _label = ""

    def __init__(self, *operands: Formula) -> None:
        self.operands: tuple[Formula, ...] = tuple(operands)

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.operands == self.operands

    def __hash__(self) -> int:
        return hash((self._label, self.operands))

    def __repr__(self) -> str:
        return f"{self._label}({', '.join(map(repr, self.operands))})"


class And(_Nary):
    """Conjunction; with no operands it is true."""

    _label = "and"


class Or(_Nary):
    """Disjunction; with no operands it is false."""

    _label = "or"


def implies(a: Formula, b: Formula) -> Formula:
    """The formula ``a -> b``."""
    return Or(Not(a), b)


def unique(*args: str) -> Formula:
    """Exactly one of the named variables is true."""
    variables = [Var(name) for name in args]
    exclusions = [
        Or(Not(first), Not(second))
        for index, first in enumerate(variables)
        for second in variables[index + 1:]
    ]
    return And(Or(*variables), *exclusions)


class _Encoder:
    def __init__(self) -> None:
        self.variables: dict[str, int] = {}
        self.clauses: list[Clause] = []
        self.count = 0

    def fresh(self) -> int:
        self.count += 1
        return self.count

    def literal(self, formula: Formula) -> int:
        if isinstance(formula, Var):
            if formula.name not in self.variables:
                self.variables[formula.name] = self.fresh()
            return self.variables[formula.name]
        if isinstance(formula, Not):
            return -self.literal(formula.operand)
        if isinstance(formula, And):
            literals = [self.literal(op) for op in formula.operands]
            aux = self.fresh()
            self.clauses.extend([-aux, lit] for lit in literals)
            self.clauses.append([aux] + [-lit for lit in literals])
            return aux
        if isinstance(formula, Or):
            literals = [self.literal(op) for op in formula.operands]
            aux = self.fresh()
            self.clauses.append([-aux] + literals)
            self.clauses.extend([aux, -lit] for lit in literals)
            return aux
        raise TypeError(f"not a formula: {formula!r}")

    def add(self, formula: Formula) -> None:
        if isinstance(formula, And):
            for operand in formula.operands:
                self.add(operand)
        elif isinstance(formula, Or):
            self.clauses.append([self.literal(op) for op in formula.operands])
        else:
            self.clauses.append([self.literal(formula)])


def to_cnf(formula: Formula) -> tuple[list[Clause], dict[str, int]]:
    """Encode ``formula`` as equisatisfiable clauses.

    Returns the clauses and the number given to each named variable.
    """
    encoder = _Encoder()
    encoder.add(formula)
    return encoder.clauses, encoder.variables


@dataclass
class MaxSatResult:
    """Outcome of a MaxSAT search."""

    satisfiable: bool
    model: dict[int, bool] = field(default_factory=dict)
    cost: int = 0


def _propagate(clauses: Sequence[Clause], assign: dict[int, bool]) -> bool:
    changed = True
    while changed:
        changed = False
        for clause in clauses:
            open_literals = []
            satisfied = False
            for lit in clause:
                value = assign.get(abs(lit))
                if value is None:
                    open_literals.append(lit)
                elif value == (lit > 0):
                    satisfied = True
                    break
            if satisfied:
                continue
            if not open_literals:
                return False
            if len(open_literals) == 1:
                lit = open_literals[0]
                assign[abs(lit)] = lit > 0
                changed = True
    return True


def _falsified(clause: Clause, assign: dict[int, bool]) -> bool:
    return all(assign.get(abs(lit)) == (lit < 0) for lit in clause)


def solve_maxsat(
    hard: Iterable[Clause], soft: Iterable[tuple[int, Clause]]
) -> MaxSatResult:
    """Satisfy all hard clauses while minimising the weight of violated soft ones."""
    hard = [list(c) for c in hard]
    soft = [(w, list(c)) for w, c in soft if w > 0]
    all_vars = sorted(
        {abs(l) for c in hard for l in c} | {abs(l) for _, c in soft for l in c}
    )
    soft_literals = [lit for _, c in soft for lit in c]
    best: list = [None, math.inf]

    def cost(assign: dict[int, bool]) -> int:
        return sum(w for w, c in soft if _falsified(c, assign))

    def search(assign: dict[int, bool]) -> None:
        if not _propagate(hard, assign):
            return
        current = cost(assign)
        if current >= best[1]:
            return
        decision: Optional[tuple[int, bool]] = None
        for lit in soft_literals:
            if abs(lit) not in assign:
                decision = (abs(lit), lit > 0)
                break
        if decision is None:
            var = next((v for v in all_vars if v not in assign), None)
            if var is None:
                best[0], best[1] = dict(assign), current
                return
            decision = (var, False)
        var, first = decision
        for value in (first, not first):
            branch = dict(assign)
            branch[var] = value
            search(branch)

    search({})
    if best[0] is None:
        return MaxSatResult(satisfiable=False)
    return MaxSatResult(satisfiable=True, model=best[0], cost=int(best[1]))


def minimal_unsat_core(clauses: Iterable[Clause]) -> list[Clause]:
    """Return a minimal unsatisfiable subset of ``clauses``."""
    core = [list(c) for c in clauses]
    if solve_maxsat(core, []).satisfiable:
        raise ValueError("the clauses are satisfiable")
    index = 0
    while index < len(core):
        candidate = core[:index] + core[index + 1:]
        if solve_maxsat(candidate, []).satisfiable:
            index += 1
        else:
            core = candidate
    return core