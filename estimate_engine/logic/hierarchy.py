from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..models import Assembly, Division, LibraryItemPath, LibraryItemSelection, Section


@dataclass
class DivisionNode:
    division: Division
    section_ids: List[str] = field(default_factory=list)


@dataclass
class SectionNode:
    section: Section
    division_id: str
    assembly_ids: List[str] = field(default_factory=list)


@dataclass
class AssemblyNode:
    assembly: Assembly
    section_id: str
    selections: List[Tuple[LibraryItemSelection, LibraryItemPath]] = field(default_factory=list)


@dataclass
class Hierarchy:
    """Division -> section -> assembly tree with one node per library record."""

    divisions: Dict[str, DivisionNode] = field(default_factory=dict)
    sections: Dict[str, SectionNode] = field(default_factory=dict)
    assemblies: Dict[str, AssemblyNode] = field(default_factory=dict)


def build_hierarchy(selections: List[Tuple[LibraryItemSelection, LibraryItemPath]]) -> Hierarchy:
    """Group resolved selections under deduplicated nodes, in first-seen order."""
    h = Hierarchy()
    for selection, path in selections:
        div, sec, asm = path.division, path.section, path.assembly

        d = h.divisions.setdefault(div.id, DivisionNode(division=div))
        if sec.id not in d.section_ids:
            d.section_ids.append(sec.id)

        s = h.sections.setdefault(sec.id, SectionNode(section=sec, division_id=div.id))
        if asm.id not in s.assembly_ids:
            s.assembly_ids.append(asm.id)

        a = h.assemblies.setdefault(asm.id, AssemblyNode(assembly=asm, section_id=sec.id))
        a.selections.append((selection, path))
    return h
