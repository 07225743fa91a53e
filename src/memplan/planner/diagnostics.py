"""
Plan Diagnostics

Read-only views over a computed plan:
- find_overlaps: every pair of buffers alive at once that share memory
- render_memory_plan: buffer table plus one ASCII occupancy bar per step
- build_report: MemoryPlanReport summarising arena size and reuse
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from memplan.config import PlannerConfig


@dataclass
class OverlapRecord:
    """Two buffers alive at the same step whose byte ranges intersect"""
    first_index: int
    first_first_time_used: int
    first_last_time_used: int
    first_start_offset: int
    first_end_offset: int

    second_index: int
    second_first_time_used: int
    second_last_time_used: int
    second_start_offset: int
    second_end_offset: int

    # Granted by the producing operator's reuse window
    sanctioned: bool = False

    @property
    def overlap_bytes(self) -> int:
        return (min(self.first_end_offset, self.second_end_offset) -
                max(self.first_start_offset, self.second_start_offset))

    def message(self) -> str:
        text = (f"Overlap: {self.first_index} ({self.first_first_time_used}=>"
                f"{self.first_last_time_used}, {self.first_start_offset}->"
                f"{self.first_end_offset}) vs {self.second_index} "
                f"({self.second_first_time_used}=>{self.second_last_time_used}, "
                f"{self.second_start_offset}->{self.second_end_offset})")
        if self.sanctioned:
            text += " [reuse]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['overlap_bytes'] = self.overlap_bytes
        return data


def _is_sanctioned(planner, input_index: int, output_index: int) -> bool:
    """Overlap of output over input lies inside the window its producer grants"""
    decision = planner.find_reuse(input_index, output_index)
    if decision is None:
        return False
    delta = planner.get_offset_for_buffer(output_index) - planner.get_offset_for_buffer(input_index)
    if planner.is_operator_reversed(decision.operator_index):
        return delta >= decision.reverse_limit
    return decision.allows_forward(delta)


def find_overlaps(planner) -> List[OverlapRecord]:
    """
    O(n^2) scan for buffers sharing memory while alive at the same step.

    Each unordered pair is listed once, lower index first.
    """
    buffers = [planner.get_buffer_requirement(i) for i in range(planner.get_buffer_count())]
    offsets = [planner.get_offset_for_buffer(i) for i in range(len(buffers))]

    overlaps = []
    for i, a in enumerate(buffers):
        a_start, a_end = offsets[i], offsets[i] + a.size
        for j in range(i + 1, len(buffers)):
            b = buffers[j]
            if not a.overlaps_in_time(b):
                continue
            b_start, b_end = offsets[j], offsets[j] + b.size
            if a_start >= b_end or b_start >= a_end:
                continue
            overlaps.append(OverlapRecord(
                first_index=i,
                first_first_time_used=a.first_time_used,
                first_last_time_used=a.last_time_used,
                first_start_offset=a_start,
                first_end_offset=a_end,
                second_index=j,
                second_first_time_used=b.first_time_used,
                second_last_time_used=b.last_time_used,
                second_start_offset=b_start,
                second_end_offset=b_end,
                sanctioned=_is_sanctioned(planner, i, j) or _is_sanctioned(planner, j, i),
            ))
    return overlaps


def ordinal_character(index: int) -> str:
    """0-9, then a-z, then A-Z, then '*' for everything past 61"""
    if index < 10:
        return chr(ord('0') + index)
    if index < 36:
        return chr(ord('a') + index - 10)
    if index < 62:
        return chr(ord('A') + index - 36)
    return '*'


def render_memory_plan(planner, config: Optional[PlannerConfig] = None) -> List[str]:
    """
    Text rendering of a plan.

    One line per buffer, then one occupancy bar per execution step scaled so
    the whole arena spans the line. Cells covered by two live buffers are
    marked with the conflict character.
    """
    config = config or PlannerConfig()
    width = config.line_width

    buffers = [planner.get_buffer_requirement(i) for i in range(planner.get_buffer_count())]
    offsets = [planner.get_offset_for_buffer(i) for i in range(len(buffers))]

    lines = []
    for buffer, offset in zip(buffers, offsets):
        lines.append(f"{ordinal_character(buffer.index)} (id={buffer.index}): "
                     f"size={buffer.size}, offset={offset}, "
                     f"first_used={buffer.first_time_used} last_used={buffer.last_time_used}")

    max_size = max([width] + [offset + b.size for b, offset in zip(buffers, offsets)])
    max_time = max([0] + [b.last_time_used for b in buffers])

    for t in range(max_time + 1):
        line = [config.empty_cell] * width
        memory_use = 0
        for buffer, offset in zip(buffers, offsets):
            if t < buffer.first_time_used or t > buffer.last_time_used:
                continue
            memory_use += buffer.size
            line_start = (offset * width) // max_size
            line_end = ((offset + buffer.size) * width) // max_size
            for n in range(line_start, line_end):
                if line[n] == config.empty_cell:
                    line[n] = ordinal_character(buffer.index)
                else:
                    line[n] = config.conflict_cell
        prefix = " " if t < 10 else ""
        lines.append(f"{prefix}{t}: {''.join(line)} ({(memory_use + 1023) // 1024}k)")
    return lines


@dataclass
class BufferPlacement:
    """Where one buffer ended up"""
    index: int
    size: int
    offset: int
    first_time_used: int
    last_time_used: int
    offline: bool = False
    reuse_source: Optional[int] = None

    @property
    def end_offset(self) -> int:
        return self.offset + self.size


@dataclass
class MemoryPlanReport:
    """
    Summary of a computed plan.

    naive_size_bytes is the arena a planner without any sharing would need
    (every buffer back to back).
    """
    arena_size_bytes: int
    naive_size_bytes: int
    buffer_count: int
    operator_count: int
    max_buffer_count: int
    placements: List[BufferPlacement] = field(default_factory=list)
    reversed_operators: List[int] = field(default_factory=list)
    overlaps: List[OverlapRecord] = field(default_factory=list)

    @property
    def savings_bytes(self) -> int:
        return self.naive_size_bytes - self.arena_size_bytes

    @property
    def savings_ratio(self) -> float:
        if self.naive_size_bytes == 0:
            return 0.0
        return self.savings_bytes / self.naive_size_bytes

    @property
    def unsanctioned_overlaps(self) -> List[OverlapRecord]:
        return [overlap for overlap in self.overlaps if not overlap.sanctioned]

    def format_report(self, show_placements: bool = True) -> str:
        """
        Generate human-readable plan report.

        Args:
            show_placements: Whether to include the per-buffer table

        Returns:
            Formatted string report
        """
        lines = []
        lines.append("=" * 80)
        lines.append("MEMORY PLAN REPORT")
        lines.append("=" * 80)
        lines.append("")
        lines.append(f"Arena Size:       {self.arena_size_bytes:,} bytes")
        lines.append(f"Without Sharing:  {self.naive_size_bytes:,} bytes")
        lines.append(f"Savings:          {self.savings_bytes:,} bytes "
                     f"({self.savings_ratio * 100:.1f}%)")
        lines.append(f"Buffers:          {self.buffer_count} "
                     f"(capacity {self.max_buffer_count})")
        lines.append(f"Operators:        {self.operator_count}")
        lines.append("")

        if self.reversed_operators:
            ops = ", ".join(str(i) for i in self.reversed_operators)
            lines.append(f"Reverse-order operators: {ops}")
        else:
            lines.append("Reverse-order operators: none")

        sanctioned = len(self.overlaps) - len(self.unsanctioned_overlaps)
        lines.append(f"Overlaps: {len(self.overlaps)} ({sanctioned} from reuse)")
        for overlap in self.unsanctioned_overlaps:
            lines.append(f"  {overlap.message()}")
        lines.append("")

        if show_placements and self.placements:
            lines.append(f"{'Buffer':>6} {'Size':>10} {'Offset':>10} {'End':>10} "
                         f"{'Lifetime':>10} {'Reuses':>7}")
            lines.append("-" * 60)
            for p in self.placements:
                lifetime = f"{p.first_time_used}-{p.last_time_used}"
                reuse = "-" if p.reuse_source is None else str(p.reuse_source)
                marker = "*" if p.offline else " "
                lines.append(f"{p.index:>5}{marker} {p.size:>10} {p.offset:>10} "
                             f"{p.end_offset:>10} {lifetime:>10} {reuse:>7}")
            lines.append("")
            if any(p.offline for p in self.placements):
                lines.append("* offline (fixed offset)")
                lines.append("")

        lines.append("=" * 80)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'arena_size_bytes': self.arena_size_bytes,
            'naive_size_bytes': self.naive_size_bytes,
            'savings_bytes': self.savings_bytes,
            'savings_ratio': self.savings_ratio,
            'buffer_count': self.buffer_count,
            'operator_count': self.operator_count,
            'max_buffer_count': self.max_buffer_count,
            'reversed_operators': list(self.reversed_operators),
            'placements': [asdict(p) for p in self.placements],
            'overlaps': [o.to_dict() for o in self.overlaps],
        }

    def __str__(self) -> str:
        """String representation (short summary)"""
        return (f"MemoryPlanReport(arena={self.arena_size_bytes}B, "
                f"naive={self.naive_size_bytes}B, "
                f"saved={self.savings_ratio * 100:.0f}%)")


def build_report(planner) -> MemoryPlanReport:
    placements = []
    for i in range(planner.get_buffer_count()):
        buffer = planner.get_buffer_requirement(i)
        placements.append(BufferPlacement(
            index=i,
            size=buffer.size,
            offset=planner.get_offset_for_buffer(i),
            first_time_used=buffer.first_time_used,
            last_time_used=buffer.last_time_used,
            offline=buffer.is_offline,
            reuse_source=planner.get_reuse_source(i),
        ))

    return MemoryPlanReport(
        arena_size_bytes=planner.get_maximum_memory_size(),
        naive_size_bytes=sum(p.size for p in placements),
        buffer_count=planner.get_buffer_count(),
        operator_count=planner.operator_count,
        max_buffer_count=planner.max_buffer_count,
        placements=placements,
        reversed_operators=planner.reversed_operators(),
        overlaps=find_overlaps(planner),
    )
