from __future__ import annotations

from pathlib import Path

from libraries.rendering.aggregator import OUTPUT_CREATED_MARKER, OutputAggregator
from libraries.rendering.models import OutputKind


def test_marker_is_resolved_against_the_document_directory(tmp_path: Path) -> None:
    buffer = OutputAggregator()
    buffer.append(OutputKind.ERROR, "processing file: report.Rmd\n")
    buffer.append(OutputKind.NORMAL, "Output created: report.html\r\n")

    assert buffer.find_output_file(tmp_path) == tmp_path / "report.html"


def test_marker_split_across_chunks_and_streams(tmp_path: Path) -> None:
    buffer = OutputAggregator()
    buffer.append(OutputKind.NORMAL, "pandoc done\nOutput cre")
    buffer.append(OutputKind.NORMAL, "ated: out/report.html\n")
    buffer.append(OutputKind.ERROR, "warning: something\n")

    assert buffer.find_output_file(tmp_path) == tmp_path / "out" / "report.html"
    assert buffer.text().startswith("pandoc done\nOutput created")


def test_first_marker_wins_and_absolute_paths_are_kept(tmp_path: Path) -> None:
    absolute = tmp_path / "elsewhere" / "first.pdf"
    buffer = OutputAggregator()
    buffer.append(OutputKind.NORMAL, f"{OUTPUT_CREATED_MARKER}{absolute}\n")
    buffer.append(OutputKind.NORMAL, f"{OUTPUT_CREATED_MARKER}second.html\n")

    assert buffer.find_output_file(tmp_path / "docs") == absolute


def test_marker_must_start_a_line(tmp_path: Path) -> None:
    buffer = OutputAggregator()
    buffer.append(OutputKind.NORMAL, "note: Output created: report.html\n")
    buffer.append(OutputKind.NORMAL, "Output created:   \n")

    assert buffer.find_output_file(tmp_path) is None


def test_chunks_keep_arrival_order_and_clear_resets() -> None:
    buffer = OutputAggregator()
    buffer.append(OutputKind.NORMAL, "a")
    buffer.append(OutputKind.ERROR, "b")
    buffer.append(OutputKind.NORMAL, "")
    buffer.append(OutputKind.NORMAL, "c")

    assert len(buffer) == 3
    assert [text for _, text in buffer.chunks()] == ["a", "b", "c"]
    assert [text for _, text in buffer.chunks(OutputKind.ERROR)] == ["b"]

    buffer.clear()
    assert len(buffer) == 0
    assert buffer.text() == ""
