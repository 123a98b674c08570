# hrvstream/dashboard/tabs.py
"""
Per-modality tabs fed from Store snapshots.

The set of tabs is closed: EcgTab, EegTab, EyeTab. Each one turns a Snapshot
into a plain view model (metric cards, figure series, status line) and
forgets its cached view when it is suspended. TabSet keeps the active index
and runs the poll -> submit -> prepare -> render cycle for the active tab
only.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from hrvstream.hrv_metrics.service_hrv import poincare_points
from hrvstream.signals.errors import ChannelClosed
from hrvstream.streaming.router import StreamingRouter
from hrvstream.streaming.store import Modality, Snapshot, Store
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="dashboard", logfile_name="dashboard.log")


def _fmt(v, nd: int = 1) -> str:
    if v is None:
        return "N/A"
    try:
        value = float(v)
    except (TypeError, ValueError):
        return "N/A"
    if np.isnan(value):
        return "N/A"
    return f"{value:.{nd}f}"


def metric_card(title: str, value: str, unit: str = "") -> Dict[str, str]:
    return {"title": title, "value": value, "unit": unit}


def _figure(fig) -> Dict[str, List[float]]:
    if fig is None:
        return {"x": [], "y": []}
    return {"x": fig.x.tolist(), "y": fig.y.tolist()}


class Tab:
    modality: Modality
    title: str = ""

    def __init__(self, stream_id: str) -> None:
        self.stream_id = stream_id
        self.last_version: Optional[int] = None
        self.view: Optional[dict] = None

    def render(self, snapshot: Snapshot) -> dict:
        """View model for `snapshot`; re-rendered only when its version changed."""
        if self.view is not None and snapshot.version == self.last_version:
            return self.view
        self.view = self._build(snapshot)
        self.last_version = snapshot.version
        return self.view

    def on_suspend(self) -> None:
        self.view = None
        self.last_version = None

    def _build(self, snapshot: Snapshot) -> dict:
        return {
            "title": self.title,
            "stream": snapshot.stream_id,
            "version": snapshot.version,
            "waveform": _figure(snapshot.waveform_figure),
            "errors": dict(snapshot.errors),
        }


class EcgTab(Tab):
    modality = Modality.ECG
    title = "ECG / HRV"

    def _build(self, snapshot: Snapshot) -> dict:
        view = super()._build(snapshot)
        t = snapshot.time
        f = snapshot.frequency
        nl = snapshot.nonlinear
        view["cards"] = [
            metric_card("SDNN", _fmt(t.sdnn_s * 1000.0 if t else None, 1), "ms"),
            metric_card("RMSSD", _fmt(t.rmssd_s * 1000.0 if t else None, 1), "ms"),
            metric_card("pNN50", _fmt(t.pnn50 * 100.0 if t else None, 1), "%"),
            metric_card("Mean HR", _fmt(t.mean_hr_bpm if t else None, 1), "bpm"),
            metric_card("HR max", _fmt(t.hr_max_bpm if t else None, 1), "bpm"),
            metric_card("HR min", _fmt(t.hr_min_bpm if t else None, 1), "bpm"),
            metric_card("LF/HF", _fmt(f.lf_hf if f else None, 2)),
            metric_card("SD1", _fmt(nl.sd1_s * 1000.0 if nl and nl.sd1_s is not None else None, 1), "ms"),
            metric_card("SampEn", _fmt(nl.sampen if nl else None, 2)),
            metric_card("DFA a1", _fmt(nl.dfa_alpha1 if nl else None, 2)),
        ]
        view["hr"] = _figure(snapshot.rr_figure)
        if snapshot.rr is not None and len(snapshot.rr) > 1:
            px, py = poincare_points(snapshot.rr)
            view["poincare"] = {"x": px.tolist(), "y": py.tolist()}
        else:
            view["poincare"] = {"x": [], "y": []}
        view["psd"] = (
            {"x": f.freqs_hz.tolist(), "y": f.psd_s2_per_hz.tolist()} if f else {"x": [], "y": []}
        )
        sqi = snapshot.sqi
        if sqi is None:
            view["status"] = "Signal quality: Unknown"
        else:
            view["status"] = f"Signal quality: {sqi.status.value}"
            if sqi.reasons:
                view["status"] += " (" + "; ".join(sqi.reasons) + ")"
        return view


class EegTab(Tab):
    modality = Modality.EEG
    title = "EEG"


class EyeTab(Tab):
    modality = Modality.EYE
    title = "Eye tracking"


TAB_TYPES = {Modality.ECG: EcgTab, Modality.EEG: EegTab, Modality.EYE: EyeTab}


def make_tab(stream_id: str, modality: Modality) -> Tab:
    return TAB_TYPES[Modality(modality)](stream_id)


class TabSet:
    """
    Tabs over one router / store pair; only the active tab is prepared.
    """

    def __init__(self, router: StreamingRouter, store: Store, tabs: Sequence[Tab]) -> None:
        if not tabs:
            raise ValueError("TabSet needs at least one tab")
        self.router = router
        self.store = store
        self.tabs: List[Tab] = list(tabs)
        self.active = 0
        for tab in self.tabs:
            store.open_stream(tab.stream_id, tab.modality)

    @property
    def active_tab(self) -> Tab:
        return self.tabs[self.active]

    def select(self, index: int) -> Tab:
        if not 0 <= index < len(self.tabs):
            raise IndexError(f"tab {index} out of range (0..{len(self.tabs) - 1})")
        if index != self.active:
            self.active_tab.on_suspend()
            self.active = index
        return self.active_tab

    def tick(self) -> dict:
        """One refresh: drain router updates, prepare and render the active tab."""
        try:
            self.store.drain(self.router.poll_updates)
        except ChannelClosed:
            logger.warning("Router closed, rendering last known data")
        tab = self.active_tab
        return tab.render(self.store.prepare(tab.stream_id))
