"""Dependency resolution of RPM packages as a partial weighted MaxSAT problem."""

from __future__ import annotations

import enum
import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from rpmtree import rpmver
from rpmtree.models import Entry, Package, Version
from rpmtree.solver import (
    And,
    Formula,
    Not,
    Or,
    Var,
    implies,
    minimal_unsat_core,
    solve_maxsat,
    to_cnf,
    unique,
)

log = logging.getLogger(__name__)


class VarType(str, enum.Enum):
    """What a solver variable stands for."""

    PACKAGE = "Package"
    RESOURCE = "Resource"
    FILE = "File"


@dataclass(frozen=True)
class VarContext:
    """Identifies a provided resource and the package providing it."""

    package: str
    provides: str
    version: Version


def _context_order(a: VarContext, b: VarContext) -> int:
    if a.package != b.package:
        return -1 if a.package < b.package else 1
    return rpmver.compare(a.version, b.version)


@dataclass(eq=False)
class ResolverVar:
    """A solver variable tied to a package and one of its resources."""

    sat_var_name: str
    var_type: VarType
    context: VarContext
    package: Package
    resource_version: Version

    def __str__(self) -> str:
        return f"{self.package}({self.context.provides})"


def vars_string(variables: Iterable[ResolverVar]) -> list[str]:
    """Describe each variable."""
    return [str(v) for v in variables]


@dataclass
class Resolution:
    """Packages to install, left out, and pulled in but forcibly ignored."""

    install: list[Package] = field(default_factory=list)
    excluded: list[Package] = field(default_factory=list)
    force_ignored: list[Package] = field(default_factory=list)


class NoSolutionError(Exception):
    """Raised when the requirements cannot be satisfied."""


@dataclass
class _Unresolvable:
    package: Package
    requirement: Entry
    candidates: list[ResolverVar]


def _compare_requires(
    entry_ver: Version, flag: str, provides: Sequence[ResolverVar]
) -> list[ResolverVar]:
    accepts = []
    for dep in provides:
        dep_ver = dep.resource_version
        if not entry_ver.rel:
            dep_ver = Version(epoch=dep_ver.epoch, ver=dep_ver.ver)
        if not (dep_ver.epoch or dep_ver.ver or dep_ver.rel):
            works = True
        else:
            result = rpmver.compare(dep_ver, entry_ver)
            if flag == "EQ":
                works = result == 0
            elif flag == "LE":
                works = result <= 0
            elif flag == "GE":
                works = result >= 0
            elif flag == "LT":
                works = result == -1
            elif flag == "GT":
                works = result == 1
            elif flag == "":
                return list(provides)
            else:
                raise ValueError(f"can't interprate flags value {flag}")
        if works:
            accepts.append(dep)
    return accepts


class Resolver:
    """Chooses a consistent set of packages satisfying the requirements."""

    def __init__(self, nobest: bool) -> None:
        self._count = 0
        self._provides: dict[str, list[ResolverVar]] = {}
        self._packages: dict[str, list[ResolverVar]] = {}
        self._pkg_provides: dict[VarContext, list[ResolverVar]] = {}
        self._vars: dict[str, ResolverVar] = {}
        self._best: dict[str, Package] = {}
        self._ands: list[Formula] = []
        self._unresolvable: list[_Unresolvable] = []
        self._force_ignored: dict[str, Package] = {}
        self.nobest = nobest

    def _ticket(self) -> str:
        self._count += 1
        return f"x{self._count}"

    def load_involved_packages(
        self,
        packages: Sequence[Package],
        ignore_regex: Optional[Sequence[str]],
        allow_regex: Optional[Sequence[str]],
    ) -> None:
        """Load the candidate packages and build the implication rules.

        Packages not matched by ``allow_regex`` (when given) or matched by
        ``ignore_regex`` lose their requirements and are reported as ignored.
        """
        ignore_regex = list(ignore_regex or [])
        allow_regex = list(allow_regex or [])

        def matches(pattern: str, text: str) -> bool:
            try:
                return re.search(pattern, text) is not None
            except re.error as exc:
                raise ValueError(
                    f"failed to match package with regex '{pattern}': {exc}"
                ) from exc

        deduplicated: dict[str, Package] = {}
        for pkg in packages:
            full_name = str(pkg)
            if full_name in deduplicated:
                log.info("Removing duplicate of  %s.", full_name)
                continue
            allowed = not allow_regex or any(matches(r, full_name) for r in allow_regex)
            ignored = False
            if allowed:
                for rex in ignore_regex:
                    if matches(rex, full_name):
                        log.warning("Package %s is forcefully ignored by regex '%s'.", full_name, rex)
                        ignored = True
                        break
            else:
                log.warning("Package %s is not explicitly allowed", full_name)
            if not allowed or ignored:
                pkg.requires = []
                self._force_ignored[full_name] = pkg
            deduplicated[full_name] = pkg

        candidates = [deduplicated[k] for k in sorted(deduplicated)]
        for pkg in candidates:
            best = self._best.get(pkg.name)
            if best is None or rpmver.compare(pkg.version, best.version) == 1:
                self._best[pkg.name] = pkg
        if not self.nobest:
            candidates = [self._best[k] for k in sorted(self._best)]

        for pkg in candidates:
            pkg_var, resource_vars = self._explode_package_to_vars(pkg)
            if not resource_vars:
                continue
            if pkg_var is not None:
                self._packages.setdefault(pkg.name, []).append(pkg_var)
                self._pkg_provides[pkg_var.context] = resource_vars
            for var in resource_vars:
                self._provides.setdefault(var.context.provides, []).append(var)
                self._vars[var.sat_var_name] = var

        version_key = functools.cmp_to_key(rpmver.compare)
        for name in self._packages:
            self._packages[name].sort(key=lambda v: version_key(v.package.version))

        log.info("Loaded %d packages.", len(self._pkg_provides))

        for context in sorted(self._pkg_provides, key=functools.cmp_to_key(_context_order)):
            resource_vars = self._pkg_provides[context]
            everything = And(*(Var(v.sat_var_name) for v in resource_vars))
            rules: list[Formula] = [implies(Var(v.sat_var_name), everything) for v in resource_vars]
            pkg_var = resource_vars[-1]
            rules.append(implies(Var(pkg_var.sat_var_name), self._explode_package_requires(pkg_var)))
            conflicts = self._explode_package_conflicts(pkg_var)
            if conflicts is not None:
                rules.append(implies(Var(pkg_var.sat_var_name), Not(conflicts)))
            self._ands.extend(rules)
        log.info("Generated %d variables.", len(self._vars))

    def construct_requirements(self, packages: Iterable[str]) -> None:
        """Require the newest provider of each named package."""
        for name in packages:
            var = self._resolve_newest(name)
            log.info("Selecting %s: %s", name, var.package)
            self._ands.append(Var(var.sat_var_name))

    def _soft_clauses(self, variables: dict[str, int]) -> list[tuple[int, list[int]]]:
        soft = []
        for pkgs in self._packages.values():
            weight = 1901
            for var in pkgs[:-1]:
                index = variables.get(var.sat_var_name)
                if index is not None:
                    soft.append((weight, [-index]))
                if weight > 0:
                    weight -= 100
        return soft

    def resolve(self) -> Resolution:
        """Solve the problem, preferring the newest version of every package."""
        clauses, variables = to_cnf(And(*self._ands))
        result = solve_maxsat(clauses, self._soft_clauses(variables))
        if not result.satisfiable:
            log.info("No solution found.")
            raise NoSolutionError("no solution found")
        log.info("Solution with weight %d found.", result.cost)

        install: dict[VarContext, Package] = {}
        excluded: dict[VarContext, Package] = {}
        ignored: dict[VarContext, Package] = {}
        for name, var in self._vars.items():
            if var.var_type is not VarType.PACKAGE or name not in variables:
                continue
            if result.model.get(variables[name], False):
                if str(var.package) in self._force_ignored:
                    ignored[var.context] = var.package
                else:
                    install[var.context] = var.package
            else:
                excluded[var.context] = var.package
        for pkg in install.values():
            best = self._best[pkg.name]
            if rpmver.compare(best.version, pkg.version) != 0:
                log.info("Picking %s instead of best candiate %s", pkg, best)
        return Resolution(list(install.values()), list(excluded.values()), list(ignored.values()))

    def mus(self) -> list[list[int]]:
        """A minimal set of clauses that cannot be satisfied together."""
        clauses, _ = to_cnf(And(*self._ands))
        return minimal_unsat_core(clauses)

    def _explode_package_to_vars(
        self, pkg: Package
    ) -> tuple[Optional[ResolverVar], list[ResolverVar]]:
        pkg_var = None
        resource_vars = []
        for provided in pkg.provides:
            if provided.name == pkg.name:
                pkg_var = ResolverVar(
                    self._ticket(), VarType.PACKAGE,
                    VarContext(pkg.name, pkg.name, pkg.version), pkg, pkg.version,
                )
                resource_vars.append(pkg_var)
            else:
                resource_vars.append(ResolverVar(
                    self._ticket(), VarType.RESOURCE,
                    VarContext(pkg.name, provided.name, pkg.version), pkg,
                    provided.version(),
                ))
        for path in pkg.files:
            resource_vars.append(ResolverVar(
                self._ticket(), VarType.FILE,
                VarContext(pkg.name, path, pkg.version), pkg, Version(),
            ))
        return pkg_var, resource_vars

    def _explode_package_requires(self, pkg_var: ResolverVar) -> Formula:
        formula: Formula = Var(pkg_var.sat_var_name)
        for req in pkg_var.package.requires:
            candidates = self._provides.get(req.name, [])
            try:
                satisfies = self._explode_single_requires(req, candidates)
            except ValueError:
                log.warning("Package %s requires %s, but only got %s",
                            pkg_var.package, req, vars_string(candidates))
                self._unresolvable.append(_Unresolvable(pkg_var.package, req, candidates))
                return Not(formula)
            formula = And(unique(*(s.sat_var_name for s in satisfies)), formula)
        return formula

    def _explode_package_conflicts(self, pkg_var: ResolverVar) -> Optional[Formula]:
        conflicting: list[Formula] = []
        for req in pkg_var.package.conflicts:
            try:
                conflicts = self._explode_single_requires(req, self._provides.get(req.name, []))
            except ValueError:
                continue
            for var in conflicts:
                if var.package is pkg_var.package:
                    continue
                if not var.package.name.startswith("fedora-release") and not str(
                    pkg_var.package
                ).startswith("fedora-release"):
                    log.info("%s conflicts with %s", var.package, pkg_var.package)
                conflicting.append(Var(var.sat_var_name))
        return Or(*conflicting) if conflicting else None

    def _resolve_newest(self, name: str) -> ResolverVar:
        candidates = self._provides.get(name, [])
        if not candidates:
            raise ValueError(f"package {name} does not exist")
        newest = candidates[0]
        for var in candidates:
            if rpmver.compare(var.package.version, newest.package.version) == 1:
                newest = var
        return newest

    def _explode_single_requires(
        self, entry: Entry, provides: Sequence[ResolverVar]
    ) -> list[ResolverVar]:
        entry_ver = entry.version()
        per_package: dict[VarContext, list[ResolverVar]] = {}
        for var in provides:
            per_package.setdefault(var.context, []).append(var)
        accepts = []
        for group in per_package.values():
            accepted = _compare_requires(entry_ver, entry.flags, group)
            if accepted:
                accepts.append(accepted[0])
        if not accepts:
            raise ValueError(f"Nothing can satisfy {entry.name}")
        return accepts