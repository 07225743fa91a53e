"""
Memory Plan Visualization

Time x offset chart of a computed plan: one rectangle per buffer spanning its
lifetime horizontally and its byte range vertically.
"""

from pathlib import Path
from typing import Optional, Union

try:
    import matplotlib.pyplot as plt
    from matplotlib.patches import Rectangle
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False


def plot_memory_plan(
    planner,
    output_path: Union[str, Path],
    title: Optional[str] = None,
    dpi: int = 150,
) -> Path:
    """
    Draw the plan of a TopologicalMemoryPlanner.

    Buffers whose overlap was granted by reuse are hatched, unsanctioned
    overlaps get a red outline, offline buffers a dashed one.

    Args:
        planner: Planner with registered buffers
        output_path: Image file to write (format from the suffix)
        title: Plot title
        dpi: Resolution for raster formats

    Returns:
        Path of the written file
    """
    if not HAS_MATPLOTLIB:
        raise ImportError("matplotlib required for plot_memory_plan()")

    report = planner.generate_report()
    reused = {o.second_index for o in report.overlaps if o.sanctioned}
    reused |= {o.first_index for o in report.overlaps if o.sanctioned}
    conflicting = {o.first_index for o in report.unsanctioned_overlaps}
    conflicting |= {o.second_index for o in report.unsanctioned_overlaps}

    fig, ax = plt.subplots(figsize=(8, 5))
    cmap = plt.get_cmap('tab20')

    max_time = 0
    for p in report.placements:
        max_time = max(max_time, p.last_time_used + 1)
        edge = 'red' if p.index in conflicting else 'black'
        ax.add_patch(Rectangle(
            (p.first_time_used, p.offset),
            p.last_time_used - p.first_time_used + 1,
            p.size,
            facecolor=cmap(p.index % 20),
            edgecolor=edge,
            linestyle='--' if p.offline else '-',
            hatch='//' if p.index in reused else None,
            alpha=0.7,
        ))
        ax.text(p.first_time_used + 0.05, p.offset + p.size / 2, str(p.index),
                va='center', fontsize=8)

    arena = report.arena_size_bytes
    ax.axhline(arena, color='gray', linestyle='--', linewidth=1)
    ax.annotate(f'arena {arena} B', xy=(0, arena), xytext=(0.05, arena),
                fontsize=8, va='bottom')

    ax.set_xlim(0, max(max_time, 1))
    ax.set_ylim(0, max(arena, 1) * 1.08)
    ax.set_xlabel('Execution step')
    ax.set_ylabel('Offset (bytes)')
    ax.set_title(title or f'Memory plan ({report.buffer_count} buffers)')

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout()
    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path
