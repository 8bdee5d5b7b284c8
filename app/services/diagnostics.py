"""
Feedback diagnostics normalization.

Client diagnostics arrive as loosely-typed nested JSON. This module coerces
each category into a typed snapshot, writes it to the normalized
``feedback_*`` tables, reads those tables back in batches, and assembles
API items that fall back to the legacy JSON columns on ``feedback`` for any
category that has not been migrated yet.
"""
import json
import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import (
    Feedback,
    FeedbackPerformance,
    FeedbackProcess,
    FeedbackAccessibility,
    FeedbackDisplay,
    FeedbackSetting,
    FeedbackCrashReport,
    FeedbackLogEntry,
    MigrationState,
)
from app.models.feedback import FEEDBACK_STATUSES, FEEDBACK_PRIORITIES, utcnow

logger = logging.getLogger(__name__)

BACKFILL_MIGRATION_KEY = "feedback_diagnostics_backfill_v1"


# ============================================================================
# COERCION
# ============================================================================

def to_string(value: Any, fallback: str = "") -> str:
    """Stringify a JSON value; None becomes the fallback."""
    if value is None:
        return fallback
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def to_float(value: Any, fallback: float = 0.0) -> float:
    """Finite number or the fallback."""
    if value is None:
        return fallback
    if isinstance(value, bool):
        return float(value)
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if math.isfinite(parsed) else fallback


def to_optional_int(value: Any) -> Optional[int]:
    """Truncated integer, or None when the value is not a finite number."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return math.trunc(parsed)


def to_int(value: Any, fallback: int = 0) -> int:
    parsed = to_optional_int(value)
    return fallback if parsed is None else parsed


def to_bool(value: Any) -> bool:
    """Accept True, 1, "1" and "true"; everything else is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value == "1" or value.lower() == "true"
    return False


def parse_json(value: Any, fallback: Any) -> Any:
    """Parse a JSON text column, returning the fallback on any problem."""
    if not isinstance(value, str) or not value:
        return fallback
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        return fallback


def has_structured_payload(raw_value: Any) -> bool:
    """True when a legacy column holds something other than an empty literal."""
    if not isinstance(raw_value, str):
        return False
    value = raw_value.strip()
    return bool(value) and value not in ("null", "{}", "[]")


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


# ============================================================================
# SNAPSHOT TYPES
# ============================================================================

@dataclass
class DisplayEntry:
    index: int = 0
    resolution: str = ""
    backing_scale_factor: str = ""
    color_space: str = ""
    refresh_rate: str = ""
    is_retina: bool = False
    frame: str = ""

    def to_api(self) -> dict:
        return {
            "index": self.index,
            "resolution": self.resolution,
            "backingScaleFactor": self.backing_scale_factor,
            "colorSpace": self.color_space,
            "refreshRate": self.refresh_rate,
            "isRetina": self.is_retina,
            "frame": self.frame,
        }


@dataclass
class DisplayInfo:
    count: int = 0
    displays: list[DisplayEntry] = field(default_factory=list)
    main_display_index: int = 0

    def to_api(self) -> dict:
        return {
            "count": self.count,
            "displays": [display.to_api() for display in self.displays],
            "mainDisplayIndex": self.main_display_index,
        }


@dataclass
class ProcessInfo:
    total_running: int = 0
    event_monitoring_apps: int = 0
    window_management_apps: int = 0
    security_apps: int = 0
    has_jamf: bool = False
    has_kandji: bool = False
    axui_server_cpu: float = 0.0
    window_server_cpu: float = 0.0

    def to_api(self) -> dict:
        return {
            "totalRunning": self.total_running,
            "eventMonitoringApps": self.event_monitoring_apps,
            "windowManagementApps": self.window_management_apps,
            "securityApps": self.security_apps,
            "hasJamf": self.has_jamf,
            "hasKandji": self.has_kandji,
            "axuiServerCPU": self.axui_server_cpu,
            "windowServerCPU": self.window_server_cpu,
        }


@dataclass
class AccessibilityInfo:
    voice_over_enabled: bool = False
    switch_control_enabled: bool = False
    reduce_motion_enabled: bool = False
    increase_contrast_enabled: bool = False
    reduce_transparency_enabled: bool = False
    differentiate_without_color_enabled: bool = False
    display_has_inverted_colors: bool = False

    def to_api(self) -> dict:
        return {
            "voiceOverEnabled": self.voice_over_enabled,
            "switchControlEnabled": self.switch_control_enabled,
            "reduceMotionEnabled": self.reduce_motion_enabled,
            "increaseContrastEnabled": self.increase_contrast_enabled,
            "reduceTransparencyEnabled": self.reduce_transparency_enabled,
            "differentiateWithoutColorEnabled": self.differentiate_without_color_enabled,
            "displayHasInvertedColors": self.display_has_inverted_colors,
        }


@dataclass
class PerformanceInfo:
    cpu_usage_percent: float = 0.0
    memory_used_gb: float = 0.0
    memory_total_gb: float = 0.0
    memory_pressure: str = "unknown"
    swap_used_gb: float = 0.0
    thermal_state: str = "unknown"
    processor_count: int = 0
    is_low_power_mode_enabled: bool = False
    power_source: str = "unknown"
    battery_level: Optional[int] = None

    def to_api(self) -> dict:
        return {
            "cpuUsagePercent": self.cpu_usage_percent,
            "memoryUsedGB": self.memory_used_gb,
            "memoryTotalGB": self.memory_total_gb,
            "memoryPressure": self.memory_pressure,
            "swapUsedGB": self.swap_used_gb,
            "thermalState": self.thermal_state,
            "processorCount": self.processor_count,
            "isLowPowerModeEnabled": self.is_low_power_mode_enabled,
            "powerSource": self.power_source,
            "batteryLevel": self.battery_level,
        }


@dataclass
class DiagnosticsPayload:
    """Normalized diagnostics for one feedback item."""
    settings_snapshot: dict[str, str] = field(default_factory=dict)
    recent_errors: list[str] = field(default_factory=list)
    recent_logs: list[str] = field(default_factory=list)
    display_info: DisplayInfo = field(default_factory=DisplayInfo)
    process_info: ProcessInfo = field(default_factory=ProcessInfo)
    accessibility_info: AccessibilityInfo = field(default_factory=AccessibilityInfo)
    performance_info: PerformanceInfo = field(default_factory=PerformanceInfo)
    emergency_crash_reports: list[str] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "DiagnosticsPayload":
        """Normalize a camelCase diagnostics object as sent by the app."""
        raw = _as_dict(raw) or {}
        return cls(
            settings_snapshot=normalize_settings_snapshot(raw.get("settingsSnapshot")),
            recent_errors=normalize_string_list(raw.get("recentErrors")),
            recent_logs=normalize_string_list(raw.get("recentLogs")),
            display_info=normalize_display_info(raw.get("displayInfo")),
            process_info=normalize_process_info(raw.get("processInfo")),
            accessibility_info=normalize_accessibility_info(raw.get("accessibilityInfo")),
            performance_info=normalize_performance_info(raw.get("performanceInfo")),
            emergency_crash_reports=normalize_string_list(raw.get("emergencyCrashReports")),
        )

    @property
    def display_count(self) -> int:
        return max(self.display_info.count, len(self.display_info.displays))


@dataclass
class UpsertDiagnosticsOptions:
    """Per-category write switches; a disabled category is left untouched."""
    write_performance: bool = True
    write_process: bool = True
    write_accessibility: bool = True
    write_displays: bool = True
    write_settings: bool = True
    write_crash_reports: bool = True
    write_log_entries: bool = True

    def any(self) -> bool:
        return any(asdict(self).values())


@dataclass
class NormalizedDiagnosticsState:
    """Diagnostics read back from the normalized tables for one feedback id."""
    has_performance: bool = False
    has_process: bool = False
    has_accessibility: bool = False
    has_displays: bool = False
    has_settings: bool = False
    has_crash_reports: bool = False
    has_log_entries: bool = False
    performance_info: PerformanceInfo = field(default_factory=PerformanceInfo)
    process_info: ProcessInfo = field(default_factory=ProcessInfo)
    accessibility_info: AccessibilityInfo = field(default_factory=AccessibilityInfo)
    display_info: DisplayInfo = field(default_factory=DisplayInfo)
    settings_snapshot: dict[str, str] = field(default_factory=dict)
    emergency_crash_reports: list[str] = field(default_factory=list)
    recent_logs: list[str] = field(default_factory=list)
    recent_errors: list[str] = field(default_factory=list)


# ============================================================================
# NORMALIZERS
# ============================================================================

def normalize_string_list(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    normalized = (to_string(value).strip() for value in values)
    return [value for value in normalized if value]


def normalize_settings_snapshot(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): to_string(raw) for key, raw in value.items()}


def normalize_display_info(value: Any) -> DisplayInfo:
    value = _as_dict(value)
    if value is None:
        return DisplayInfo()

    displays = []
    raw_displays = value.get("displays")
    if isinstance(raw_displays, list):
        for raw in raw_displays:
            raw = _as_dict(raw) or {}
            displays.append(DisplayEntry(
                index=to_int(raw.get("index"), 0),
                resolution=to_string(raw.get("resolution")),
                backing_scale_factor=to_string(raw.get("backingScaleFactor")),
                color_space=to_string(raw.get("colorSpace")),
                refresh_rate=to_string(raw.get("refreshRate")),
                is_retina=to_bool(raw.get("isRetina")),
                frame=to_string(raw.get("frame")),
            ))

    # Clients have reported counts that disagree with the list; keep the larger.
    declared = to_float(value.get("count"), float(len(displays)))
    count = max(0, math.trunc(declared), len(displays))

    return DisplayInfo(
        count=count,
        displays=displays,
        main_display_index=to_int(value.get("mainDisplayIndex"), 0),
    )


def normalize_process_info(value: Any) -> ProcessInfo:
    value = _as_dict(value)
    if value is None:
        return ProcessInfo()

    return ProcessInfo(
        total_running=to_int(value.get("totalRunning")),
        event_monitoring_apps=to_int(value.get("eventMonitoringApps")),
        window_management_apps=to_int(value.get("windowManagementApps")),
        security_apps=to_int(value.get("securityApps")),
        has_jamf=to_bool(value.get("hasJamf")),
        has_kandji=to_bool(value.get("hasKandji")),
        axui_server_cpu=to_float(value.get("axuiServerCPU")),
        window_server_cpu=to_float(value.get("windowServerCPU")),
    )


def normalize_accessibility_info(value: Any) -> AccessibilityInfo:
    value = _as_dict(value)
    if value is None:
        return AccessibilityInfo()

    return AccessibilityInfo(
        voice_over_enabled=to_bool(value.get("voiceOverEnabled")),
        switch_control_enabled=to_bool(value.get("switchControlEnabled")),
        reduce_motion_enabled=to_bool(value.get("reduceMotionEnabled")),
        increase_contrast_enabled=to_bool(value.get("increaseContrastEnabled")),
        reduce_transparency_enabled=to_bool(value.get("reduceTransparencyEnabled")),
        differentiate_without_color_enabled=to_bool(value.get("differentiateWithoutColorEnabled")),
        display_has_inverted_colors=to_bool(value.get("displayHasInvertedColors")),
    )


def normalize_performance_info(value: Any) -> PerformanceInfo:
    value = _as_dict(value)
    if value is None:
        return PerformanceInfo()

    return PerformanceInfo(
        cpu_usage_percent=to_float(value.get("cpuUsagePercent")),
        memory_used_gb=to_float(value.get("memoryUsedGB")),
        memory_total_gb=to_float(value.get("memoryTotalGB")),
        memory_pressure=to_string(value.get("memoryPressure"), "unknown"),
        swap_used_gb=to_float(value.get("swapUsedGB")),
        thermal_state=to_string(value.get("thermalState"), "unknown"),
        processor_count=to_int(value.get("processorCount")),
        is_low_power_mode_enabled=to_bool(value.get("isLowPowerModeEnabled")),
        power_source=to_string(value.get("powerSource"), "unknown"),
        battery_level=to_optional_int(value.get("batteryLevel")),
    )


def has_process_data(value: ProcessInfo) -> bool:
    return value != ProcessInfo()


def has_accessibility_data(value: AccessibilityInfo) -> bool:
    return value != AccessibilityInfo()


def has_performance_data(value: PerformanceInfo) -> bool:
    return value != PerformanceInfo()


def has_display_data(value: DisplayInfo) -> bool:
    return value.count > 0 or len(value.displays) > 0


# Empty legacy column values for rows whose diagnostics live only in the
# normalized tables.
EMPTY_LEGACY_COLUMNS = {
    "recent_errors": "[]",
    "recent_logs": "[]",
    "settings_snapshot": "{}",
    "display_info": json.dumps(DisplayInfo().to_api()),
    "process_info": json.dumps(ProcessInfo().to_api()),
    "accessibility_info": json.dumps(AccessibilityInfo().to_api()),
    "performance_info": json.dumps(PerformanceInfo().to_api()),
    "emergency_crash_reports": "[]",
}


# ============================================================================
# WRITE PATH
# ============================================================================

def _upsert(db: Session, model, values: dict):
    """Build an INSERT ... ON CONFLICT(feedback_id) DO UPDATE for the session's dialect."""
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    stmt = insert(model).values(feedback_id=values["feedback_id"], **{
        k: v for k, v in values.items() if k != "feedback_id"
    })
    update = {k: stmt.excluded[k] for k in values if k != "feedback_id"}
    update["updated_at"] = utcnow()
    return stmt.on_conflict_do_update(index_elements=["feedback_id"], set_=update)


def upsert_feedback_diagnostics(
    db: Session,
    feedback_id: int,
    diagnostics: DiagnosticsPayload | dict | None,
    options: Optional[UpsertDiagnosticsOptions] = None,
) -> int:
    """
    Write diagnostics for a feedback item into the normalized tables.

    Single-row categories are upserted; collections are replaced wholesale
    so the stored rows always match the payload. Each category can be
    switched off through ``options``. Calling this twice with the same
    payload leaves the tables unchanged.

    Args:
        db: Database session
        feedback_id: Parent feedback id
        diagnostics: Normalized payload, or a raw camelCase dict
        options: Which categories to write (default: all)

    Returns:
        The display count, ``max(declared count, number of displays)``
    """
    options = options or UpsertDiagnosticsOptions()
    if not isinstance(diagnostics, DiagnosticsPayload):
        diagnostics = DiagnosticsPayload.from_raw(diagnostics)

    display_count = diagnostics.display_count

    if options.write_performance:
        perf = diagnostics.performance_info
        db.execute(_upsert(db, FeedbackPerformance, {
            "feedback_id": feedback_id,
            "cpu_usage_percent": perf.cpu_usage_percent,
            "memory_used_gb": perf.memory_used_gb,
            "memory_total_gb": perf.memory_total_gb,
            "memory_pressure": perf.memory_pressure,
            "swap_used_gb": perf.swap_used_gb,
            "thermal_state": perf.thermal_state,
            "processor_count": perf.processor_count,
            "is_low_power_mode_enabled": perf.is_low_power_mode_enabled,
            "power_source": perf.power_source,
            "battery_level": perf.battery_level,
        }))

    if options.write_process:
        proc = diagnostics.process_info
        db.execute(_upsert(db, FeedbackProcess, {
            "feedback_id": feedback_id,
            "total_running": proc.total_running,
            "event_monitoring_apps": proc.event_monitoring_apps,
            "window_management_apps": proc.window_management_apps,
            "security_apps": proc.security_apps,
            "has_jamf": proc.has_jamf,
            "has_kandji": proc.has_kandji,
            "axui_server_cpu": proc.axui_server_cpu,
            "window_server_cpu": proc.window_server_cpu,
        }))

    if options.write_accessibility:
        a11y = diagnostics.accessibility_info
        db.execute(_upsert(db, FeedbackAccessibility, {
            "feedback_id": feedback_id,
            "voice_over_enabled": a11y.voice_over_enabled,
            "switch_control_enabled": a11y.switch_control_enabled,
            "reduce_motion_enabled": a11y.reduce_motion_enabled,
            "increase_contrast_enabled": a11y.increase_contrast_enabled,
            "reduce_transparency_enabled": a11y.reduce_transparency_enabled,
            "differentiate_without_color_enabled": a11y.differentiate_without_color_enabled,
            "display_has_inverted_colors": a11y.display_has_inverted_colors,
        }))

    if options.write_displays:
        display_info = diagnostics.display_info
        db.query(FeedbackDisplay).filter(
            FeedbackDisplay.feedback_id == feedback_id
        ).delete(synchronize_session="fetch")
        db.add_all([
            FeedbackDisplay(
                feedback_id=feedback_id,
                row_index=row_index,
                display_index=display.index,
                resolution=display.resolution,
                backing_scale_factor=display.backing_scale_factor,
                color_space=display.color_space,
                refresh_rate=display.refresh_rate,
                is_retina=display.is_retina,
                frame=display.frame,
                is_main_display=display.index == display_info.main_display_index,
            )
            for row_index, display in enumerate(display_info.displays)
        ])

    if options.write_settings:
        db.query(FeedbackSetting).filter(
            FeedbackSetting.feedback_id == feedback_id
        ).delete(synchronize_session="fetch")
        db.add_all([
            FeedbackSetting(feedback_id=feedback_id, setting_key=key, setting_value=value)
            for key, value in sorted(diagnostics.settings_snapshot.items())
        ])

    if options.write_crash_reports:
        db.query(FeedbackCrashReport).filter(
            FeedbackCrashReport.feedback_id == feedback_id
        ).delete(synchronize_session="fetch")
        db.add_all([
            FeedbackCrashReport(feedback_id=feedback_id, report_index=index, report_text=text)
            for index, text in enumerate(diagnostics.emergency_crash_reports)
        ])

    if options.write_log_entries:
        db.query(FeedbackLogEntry).filter(
            FeedbackLogEntry.feedback_id == feedback_id
        ).delete(synchronize_session="fetch")
        db.add_all([
            FeedbackLogEntry(feedback_id=feedback_id, level="log", entry_index=index, message=message)
            for index, message in enumerate(diagnostics.recent_logs)
        ])
        db.add_all([
            FeedbackLogEntry(feedback_id=feedback_id, level="error", entry_index=index, message=message)
            for index, message in enumerate(diagnostics.recent_errors)
        ])

    if options.write_displays:
        db.query(Feedback).filter(Feedback.id == feedback_id).update(
            {Feedback.display_count: display_count}, synchronize_session="fetch"
        )

    db.commit()
    return display_count


# ============================================================================
# READ PATH
# ============================================================================

def _unique_feedback_ids(feedback_ids) -> list[int]:
    ids = []
    seen = set()
    for raw in feedback_ids:
        feedback_id = to_optional_int(raw)
        if feedback_id is None or feedback_id <= 0 or feedback_id in seen:
            continue
        seen.add(feedback_id)
        ids.append(feedback_id)
    return ids


def get_normalized_diagnostics_by_feedback_ids(
    db: Session,
    feedback_ids,
) -> dict[int, NormalizedDiagnosticsState]:
    """
    Batch-load normalized diagnostics for a set of feedback ids.

    Ids with no normalized rows at all are absent from the result; within a
    state, each ``has_*`` flag says whether that category was found.
    """
    ids = _unique_feedback_ids(feedback_ids)
    states: dict[int, NormalizedDiagnosticsState] = {}
    if not ids:
        return states

    def state_for(feedback_id: int) -> NormalizedDiagnosticsState:
        if feedback_id not in states:
            states[feedback_id] = NormalizedDiagnosticsState()
        return states[feedback_id]

    for row in db.query(FeedbackPerformance).filter(FeedbackPerformance.feedback_id.in_(ids)):
        state = state_for(row.feedback_id)
        state.has_performance = True
        state.performance_info = PerformanceInfo(
            cpu_usage_percent=to_float(row.cpu_usage_percent),
            memory_used_gb=to_float(row.memory_used_gb),
            memory_total_gb=to_float(row.memory_total_gb),
            memory_pressure=to_string(row.memory_pressure, "unknown"),
            swap_used_gb=to_float(row.swap_used_gb),
            thermal_state=to_string(row.thermal_state, "unknown"),
            processor_count=to_int(row.processor_count),
            is_low_power_mode_enabled=bool(row.is_low_power_mode_enabled),
            power_source=to_string(row.power_source, "unknown"),
            battery_level=to_optional_int(row.battery_level),
        )

    for row in db.query(FeedbackProcess).filter(FeedbackProcess.feedback_id.in_(ids)):
        state = state_for(row.feedback_id)
        state.has_process = True
        state.process_info = ProcessInfo(
            total_running=to_int(row.total_running),
            event_monitoring_apps=to_int(row.event_monitoring_apps),
            window_management_apps=to_int(row.window_management_apps),
            security_apps=to_int(row.security_apps),
            has_jamf=bool(row.has_jamf),
            has_kandji=bool(row.has_kandji),
            axui_server_cpu=to_float(row.axui_server_cpu),
            window_server_cpu=to_float(row.window_server_cpu),
        )

    for row in db.query(FeedbackAccessibility).filter(FeedbackAccessibility.feedback_id.in_(ids)):
        state = state_for(row.feedback_id)
        state.has_accessibility = True
        state.accessibility_info = AccessibilityInfo(
            voice_over_enabled=bool(row.voice_over_enabled),
            switch_control_enabled=bool(row.switch_control_enabled),
            reduce_motion_enabled=bool(row.reduce_motion_enabled),
            increase_contrast_enabled=bool(row.increase_contrast_enabled),
            reduce_transparency_enabled=bool(row.reduce_transparency_enabled),
            differentiate_without_color_enabled=bool(row.differentiate_without_color_enabled),
            display_has_inverted_colors=bool(row.display_has_inverted_colors),
        )

    display_rows = (
        db.query(FeedbackDisplay)
        .filter(FeedbackDisplay.feedback_id.in_(ids))
        .order_by(FeedbackDisplay.feedback_id.asc(), FeedbackDisplay.row_index.asc())
    )
    for row in display_rows:
        state = state_for(row.feedback_id)
        state.has_displays = True
        state.display_info.displays.append(DisplayEntry(
            index=to_int(row.display_index),
            resolution=to_string(row.resolution),
            backing_scale_factor=to_string(row.backing_scale_factor),
            color_space=to_string(row.color_space),
            refresh_rate=to_string(row.refresh_rate),
            is_retina=bool(row.is_retina),
            frame=to_string(row.frame),
        ))
        if row.is_main_display:
            state.display_info.main_display_index = to_int(row.display_index)

    setting_rows = (
        db.query(FeedbackSetting)
        .filter(FeedbackSetting.feedback_id.in_(ids))
        .order_by(FeedbackSetting.feedback_id.asc(), FeedbackSetting.setting_key.asc())
    )
    for row in setting_rows:
        state = state_for(row.feedback_id)
        state.has_settings = True
        state.settings_snapshot[to_string(row.setting_key)] = to_string(row.setting_value)

    crash_rows = (
        db.query(FeedbackCrashReport)
        .filter(FeedbackCrashReport.feedback_id.in_(ids))
        .order_by(FeedbackCrashReport.feedback_id.asc(), FeedbackCrashReport.report_index.asc())
    )
    for row in crash_rows:
        state = state_for(row.feedback_id)
        state.has_crash_reports = True
        state.emergency_crash_reports.append(to_string(row.report_text))

    log_rows = (
        db.query(FeedbackLogEntry)
        .filter(FeedbackLogEntry.feedback_id.in_(ids))
        .order_by(
            FeedbackLogEntry.feedback_id.asc(),
            FeedbackLogEntry.level.asc(),
            FeedbackLogEntry.entry_index.asc(),
        )
    )
    for row in log_rows:
        state = state_for(row.feedback_id)
        state.has_log_entries = True
        if to_string(row.level).lower() == "error":
            state.recent_errors.append(to_string(row.message))
        else:
            state.recent_logs.append(to_string(row.message))

    for state in states.values():
        state.display_info.count = len(state.display_info.displays)

    return states


# ============================================================================
# LEGACY COLUMNS
# ============================================================================

def parse_legacy_diagnostics(feedback: Feedback) -> DiagnosticsPayload:
    """Parse the legacy JSON columns of a feedback row."""
    return DiagnosticsPayload(
        settings_snapshot=normalize_settings_snapshot(parse_json(feedback.settings_snapshot, {})),
        recent_errors=normalize_string_list(parse_json(feedback.recent_errors, [])),
        recent_logs=normalize_string_list(parse_json(feedback.recent_logs, [])),
        display_info=normalize_display_info(parse_json(feedback.display_info, {})),
        process_info=normalize_process_info(parse_json(feedback.process_info, {})),
        accessibility_info=normalize_accessibility_info(parse_json(feedback.accessibility_info, {})),
        performance_info=normalize_performance_info(parse_json(feedback.performance_info, {})),
        emergency_crash_reports=normalize_string_list(parse_json(feedback.emergency_crash_reports, [])),
    )


def parse_tags(raw: Any) -> list[str]:
    parsed = parse_json(raw, [])
    if not isinstance(parsed, list):
        return []
    return [tag for tag in (to_string(t).strip() for t in parsed) if tag]


# ============================================================================
# API SHAPES
# ============================================================================

def _normalized_status(value: Any) -> str:
    status = to_string(value, "open")
    return status if status in FEEDBACK_STATUSES else "open"


def _normalized_priority(value: Any) -> str:
    priority = to_string(value, "medium")
    return priority if priority in FEEDBACK_PRIORITIES else "medium"


def map_feedback_row_to_summary(feedback: Feedback) -> dict:
    """List-view shape: triage fields only, no diagnostics."""
    created_at = format_timestamp(feedback.created_at)
    return {
        "id": feedback.id,
        "type": to_string(feedback.type),
        "email": feedback.email,
        "description": to_string(feedback.description),
        "isRead": bool(feedback.is_read),
        "status": _normalized_status(feedback.status),
        "priority": _normalized_priority(feedback.priority),
        "tags": parse_tags(feedback.tags),
        "appVersion": to_string(feedback.app_version),
        "externalSource": to_string(feedback.external_source, "app"),
        "externalId": feedback.external_id,
        "externalUrl": feedback.external_url,
        "hasScreenshot": bool(feedback.has_screenshot),
        "createdAt": created_at,
        "updatedAt": format_timestamp(feedback.updated_at) or created_at,
    }


def map_feedback_row_to_api_item(
    feedback: Feedback,
    normalized: Optional[NormalizedDiagnosticsState],
    include_recent_logs: bool = True,
) -> dict:
    """
    Full API item with diagnostics.

    Each category comes from the normalized tables when present there and
    from the legacy JSON column otherwise; the two are never mixed.
    """
    legacy = parse_legacy_diagnostics(feedback)
    state = normalized or NormalizedDiagnosticsState()

    display_info = state.display_info if state.has_displays else legacy.display_info
    display_count = max(
        to_int(feedback.display_count) or display_info.count,
        len(display_info.displays),
    )
    display_api = display_info.to_api()
    display_api["count"] = display_count

    if state.has_log_entries:
        recent_logs, recent_errors = state.recent_logs, state.recent_errors
    else:
        recent_logs, recent_errors = legacy.recent_logs, legacy.recent_errors

    item = map_feedback_row_to_summary(feedback)
    item.update({
        "notes": to_string(feedback.notes),
        "buildNumber": to_string(feedback.build_number),
        "macOSVersion": to_string(feedback.macos_version),
        "deviceModel": to_string(feedback.device_model),
        "totalDiskSpace": to_string(feedback.total_disk_space),
        "freeDiskSpace": to_string(feedback.free_disk_space),
        "databaseStats": {
            "sessionCount": to_int(feedback.session_count),
            "frameCount": to_int(feedback.frame_count),
            "segmentCount": to_int(feedback.segment_count),
            "databaseSizeMB": to_float(feedback.database_size_mb),
        },
        "recentErrors": list(recent_errors),
        "recentLogs": list(recent_logs) if include_recent_logs else [],
        "diagnosticsTimestamp": feedback.diagnostics_timestamp,
        "settingsSnapshot": dict(
            state.settings_snapshot if state.has_settings else legacy.settings_snapshot
        ),
        "displayCount": display_count,
        "displayInfo": display_api,
        "processInfo": (
            state.process_info if state.has_process else legacy.process_info
        ).to_api(),
        "accessibilityInfo": (
            state.accessibility_info if state.has_accessibility else legacy.accessibility_info
        ).to_api(),
        "performanceInfo": (
            state.performance_info if state.has_performance else legacy.performance_info
        ).to_api(),
        "emergencyCrashReports": list(
            state.emergency_crash_reports if state.has_crash_reports
            else legacy.emergency_crash_reports
        ),
    })
    return item


# ============================================================================
# BACKFILL
# ============================================================================

_LEGACY_ARRAY_COLUMNS = (
    Feedback.recent_errors,
    Feedback.recent_logs,
    Feedback.emergency_crash_reports,
)
_LEGACY_OBJECT_COLUMNS = (
    Feedback.settings_snapshot,
    Feedback.display_info,
    Feedback.process_info,
    Feedback.accessibility_info,
    Feedback.performance_info,
)


def has_legacy_diagnostics_source_data(db: Session) -> bool:
    """True if any feedback row carries non-empty legacy diagnostics JSON."""
    conditions = [
        func.coalesce(func.trim(column), "").notin_(["", "[]", "null"])
        for column in _LEGACY_ARRAY_COLUMNS
    ] + [
        func.coalesce(func.trim(column), "").notin_(["", "{}", "null"])
        for column in _LEGACY_OBJECT_COLUMNS
    ]
    return db.query(Feedback.id).filter(or_(*conditions)).first() is not None


def backfill_legacy_diagnostics(db: Session) -> int:
    """
    Copy legacy JSON diagnostics into the normalized tables.

    Only categories that actually carry data are written, so rows that
    never had diagnostics do not gain zero-valued records.

    Returns:
        Number of feedback rows migrated
    """
    migrated = 0
    rows = db.query(Feedback).order_by(Feedback.id.asc()).all()

    for feedback in rows:
        payload = parse_legacy_diagnostics(feedback)
        options = UpsertDiagnosticsOptions(
            write_settings=(
                bool(payload.settings_snapshot)
                or has_structured_payload(feedback.settings_snapshot)
            ),
            write_displays=has_display_data(payload.display_info),
            write_process=has_process_data(payload.process_info),
            write_accessibility=has_accessibility_data(payload.accessibility_info),
            write_performance=has_performance_data(payload.performance_info),
            write_crash_reports=bool(payload.emergency_crash_reports),
            write_log_entries=bool(payload.recent_errors or payload.recent_logs),
        )
        if not options.any():
            continue

        upsert_feedback_diagnostics(db, feedback.id, payload, options)
        migrated += 1

    logger.info(f"Backfilled legacy diagnostics for {migrated} feedback rows")
    return migrated


def run_diagnostics_backfill_once(db: Session) -> bool:
    """
    Run the legacy backfill unless the migration marker says it already ran.

    Returns:
        True if the backfill ran on this call
    """
    marker = db.get(MigrationState, BACKFILL_MIGRATION_KEY)
    if marker is not None:
        return False

    migrated = backfill_legacy_diagnostics(db) if has_legacy_diagnostics_source_data(db) else 0
    db.add(MigrationState(
        key=BACKFILL_MIGRATION_KEY,
        value=f"done:{migrated}",
        updated_at=utcnow(),
    ))
    db.commit()
    return True
