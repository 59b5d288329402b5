"""
Write gap analysis tables and charts.

Tables are tab-separated. Charts:
- Phylum coverage: horizontal stacked bars of barcoded vs gap species per
  phylum, sorted so the largest phylum is on top, with the barcoded
  percentage printed on the green bars (except values < 5%)
- Marker frequency: number of species with records for each marker, accepted
  markers highlighted
"""

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib

matplotlib.use('Agg')

import matplotlib.patches as mpatches  # noqa: E402
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

logger = logging.getLogger(__name__)

BARCODED_COLOR = '#4ade80'  # Green
GAP_COLOR = '#f87171'  # Red
OTHER_MARKER_COLOR = '#94a3b8'  # Slate


def write_table(df: pd.DataFrame, output_file: Path) -> Path:
    """Write one DataFrame as TSV."""
    output_file.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_file, sep='\t', index=False)
    logger.info(f"Wrote {len(df)} rows to {output_file}")
    return output_file


def write_tables(results: Dict[str, pd.DataFrame], output_dir: Path, variant: str) -> List[Path]:
    """
    Write the tables of one variant.

    Args:
        results: Table name -> DataFrame (checklist, species_status,
                 phylum_summary, top_gaps, marker_frequency)
        output_dir: Directory for the TSV files
        variant: Variant name used as file prefix

    Returns:
        list: Paths written
    """
    written = []
    for name, df in results.items():
        written.append(write_table(df, Path(output_dir) / f"{variant}_{name}.tsv"))
    return written


def write_overview(rows: List[Dict], output_dir: Path) -> Path:
    """Write headline counts for every variant."""
    overview = pd.DataFrame(rows, columns=['variant', 'species', 'withBarcode', 'gaps', 'coveragePercent', 'phyla'])
    return write_table(overview, Path(output_dir) / 'variant_overview.tsv')


def phylum_coverage_table(summary: pd.DataFrame) -> pd.DataFrame:
    """
    Pivot a phylum summary to one row per phylum.

    Returns:
        pd.DataFrame: phylum, barcoded, gaps, total, barcodedPercent; sorted
                      by total ascending (matplotlib draws bottom-up)
    """
    pivot = (
        summary.pivot_table(index='phylum', columns='hasBarcode', values='speciesCount', aggfunc='sum', fill_value=0)
        .reindex(columns=[True, False], fill_value=0)
    )
    table = pd.DataFrame({
        'phylum': pivot.index,
        'barcoded': pivot[True].astype(int).values,
        'gaps': pivot[False].astype(int).values,
    })
    table['total'] = table['barcoded'] + table['gaps']
    table['barcodedPercent'] = np.where(table['total'] > 0, 100.0 * table['barcoded'] / table['total'], 0.0)
    return table.sort_values(['total', 'phylum'], ascending=[True, False]).reset_index(drop=True)


def plot_phylum_coverage(summary: pd.DataFrame, output_file: Path, title: str) -> Path:
    """
    Horizontal stacked bar chart of barcoded vs gap species per phylum.

    Args:
        summary: Output of summarize_by_phylum
        output_file: PNG path
        title: Chart title

    Returns:
        Path: The saved chart
    """
    table = phylum_coverage_table(summary)

    fig, ax = plt.subplots(figsize=(10, max(3, 0.4 * len(table) + 1.5)))

    y_pos = np.arange(len(table))
    barcoded = table['barcoded'].values
    gaps = table['gaps'].values

    ax.barh(y_pos, barcoded, color=BARCODED_COLOR, label='Barcoded')
    ax.barh(y_pos, gaps, left=barcoded, color=GAP_COLOR, label='Gap')

    # Barcoded percentage on green bars wide enough to hold it
    for i, (count, percent) in enumerate(zip(barcoded, table['barcodedPercent'].values)):
        if count > 0 and percent >= 5:
            ax.text(count / 2, i, f'{percent:.0f}%',
                    ha='center', va='center',
                    color='white', fontweight='bold', fontsize=9)

    ax.set_yticks(y_pos)
    ax.set_yticklabels(table['phylum'].values, fontsize=10)
    ax.set_xlabel('Number of species', fontsize=12)
    ax.set_title(title, fontsize=14, pad=20)

    ax.grid(axis='x', alpha=0.3, linestyle='--')
    ax.set_axisbelow(True)
    ax.legend(loc='lower right', framealpha=0.9)

    plt.tight_layout()

    output_file.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Chart saved to: {output_file}")
    return output_file


def plot_marker_frequency(frequency: pd.DataFrame, output_file: Path, title: str) -> Path:
    """Bar chart of species count per marker, accepted markers in green."""
    fig, ax = plt.subplots(figsize=(10, 6))

    if frequency.empty:
        ax.text(0.5, 0.5, 'No marker data', ha='center', va='center', transform=ax.transAxes)
        ax.set_axis_off()
    else:
        x_pos = np.arange(len(frequency))
        colors = [BARCODED_COLOR if accepted else OTHER_MARKER_COLOR for accepted in frequency['accepted']]
        ax.bar(x_pos, frequency['speciesCount'].values, color=colors)
        ax.set_xticks(x_pos)
        ax.set_xticklabels(frequency['markerCode'].values, rotation=45, ha='right', fontsize=9)
        ax.set_ylabel('Number of species', fontsize=12)
        ax.grid(axis='y', alpha=0.3, linestyle='--')
        ax.set_axisbelow(True)
        ax.legend(
            handles=[
                mpatches.Patch(color=BARCODED_COLOR, label='Accepted marker'),
                mpatches.Patch(color=OTHER_MARKER_COLOR, label='Other marker'),
            ],
            loc='upper right',
            framealpha=0.9,
        )

    ax.set_title(title, fontsize=14, pad=20)
    plt.tight_layout()

    output_file.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Chart saved to: {output_file}")
    return output_file


def write_charts(results: Dict[str, pd.DataFrame], output_dir: Path, variant: str) -> List[Path]:
    """Draw the phylum coverage and marker frequency charts of one variant."""
    output_dir = Path(output_dir)
    charts = []
    if not results['phylum_summary'].empty:
        charts.append(plot_phylum_coverage(
            results['phylum_summary'],
            output_dir / f"{variant}_phylum_coverage.png",
            f"Barcode coverage by phylum ({variant} checklist)",
        ))
    else:
        logger.warning(f"No species in '{variant}', skipping phylum coverage chart")
    charts.append(plot_marker_frequency(
        results['marker_frequency'],
        output_dir / f"{variant}_marker_frequency.png",
        f"Markers in BOLD ({variant} checklist)",
    ))
    return charts
