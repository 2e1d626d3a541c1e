"""Offline datalog playback through a tuning session."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import pandas as pd

from vetune.ingestion.samples import (
    ChannelMap,
    LoadAxisSelection,
    MalformedSampleError,
    TelemetrySample,
    select_load_axis,
)
from vetune.logging.config import RateLimitedLogger

if TYPE_CHECKING:  # pragma: no cover
    from vetune.session import AutoTuneSession

__all__ = ["ReplaySummary", "iter_samples", "read_datalog", "replay_datalog"]


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReplaySummary:
    source: str
    rows: int
    accumulated: int
    malformed: int
    load_axis: LoadAxisSelection

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "rows": self.rows,
            "accumulated": self.accumulated,
            "malformed": self.malformed,
            "load_axis": self.load_axis.mode.value,
            "load_channel": self.load_axis.channel,
            "notice": self.load_axis.notice,
        }


def read_datalog(source: Path | str, *, delimiter: str | None = None) -> pd.DataFrame:
    """Read a CSV datalog; the delimiter is sniffed when not given."""

    path = Path(source)
    frame = pd.read_csv(
        path,
        sep=delimiter if delimiter is not None else None,
        engine="python",
        comment="#",
        skipinitialspace=True,
    )
    frame.columns = [str(column).strip() for column in frame.columns]
    logger.debug(
        "Datalog loaded.",
        extra={"event": "replay.loaded", "path": str(path), "rows": len(frame)},
    )
    return frame


def iter_samples(
    frame: pd.DataFrame,
    channel_map: ChannelMap,
    *,
    diagnostics: RateLimitedLogger | None = None,
) -> Iterator[TelemetrySample | None]:
    """Yield one sample per row, ``None`` for rows that cannot form a sample."""

    diagnostics = diagnostics or RateLimitedLogger(logger)
    for index, record in enumerate(frame.to_dict(orient="records")):
        try:
            yield TelemetrySample.from_channels(record, channel_map).validate()
        except MalformedSampleError as exc:
            diagnostics.warning(
                "replay.malformed_row",
                "Skipped datalog row that does not form a valid sample.",
                row=index,
                field=exc.field_name,
                error=str(exc),
            )
            yield None


def replay_datalog(
    session: "AutoTuneSession",
    source: Path | str,
    *,
    channel_map: ChannelMap | Mapping[str, Any] | None = None,
    delimiter: str | None = None,
) -> ReplaySummary:
    """Feed every row of a CSV datalog through ``session``.

    ``session`` must already be running.  The load channel is re-selected
    against the columns actually present in the log.
    """

    if not isinstance(channel_map, ChannelMap):
        channel_map = ChannelMap.from_mapping(channel_map)
    frame = read_datalog(source, delimiter=delimiter)
    selection = select_load_axis(channel_map.load, frame.columns)
    channel_map = channel_map.with_load(selection.channel)

    rows = malformed = accumulated = 0
    for sample in iter_samples(frame, channel_map):
        rows += 1
        if sample is None:
            malformed += 1
            continue
        if session.ingest(sample) is not None:
            accumulated += 1

    summary = ReplaySummary(
        source=str(source),
        rows=rows,
        accumulated=accumulated,
        malformed=malformed,
        load_axis=selection,
    )
    logger.info(
        "Datalog replay finished.",
        extra={"event": "replay.finished", **summary.as_dict()},
    )
    return summary
