"""HTTP routes: editing sessions (assets, draft, captions) and export jobs."""

import json
import logging
import math
import queue
import subprocess
import threading
import uuid
from dataclasses import asdict
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from overlayforge import ffutil
from overlayforge.engine import ExportPipeline
from overlayforge.errors import OverlayForgeError, ValidationError
from overlayforge.manifest import OutputConfig, default_output_name
from overlayforge.media import VideoSource, load_logo, load_secondary, media_kind
from overlayforge.models import POSITION_PRESETS, Draft
from overlayforge.position import Bounds, DragSession, Point
from overlayforge.timeline import TimelineStore

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

ASSET_ROLES = ("primary", "secondary", "logo")

# Draft fields a client may set through PATCH, by value type.
_TEXT_FIELDS = ("text", "font_family", "bg_color", "text_color")
_NUMBER_FIELDS = ("start", "end", "x", "y", "width", "font_size")

# In-memory project store: project_id -> project dict
_projects: dict[str, dict] = {}


def _get_project(project_id: str) -> dict | None:
    return _projects.get(project_id)


def _not_found():
    return jsonify({"error": "Project not found"}), 404


def _project_view(project: dict) -> dict:
    timeline: TimelineStore = project["timeline"]
    return {
        "status": project["status"],
        "assets": {role: p.name for role, p in project["assets"].items()},
        "duration": timeline.duration,
        "draft": asdict(timeline.draft),
        "captions": [asdict(c) for c in timeline.captions],
    }


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    role = request.form.get("role", "primary")
    if role not in ASSET_ROLES:
        return jsonify({"error": f"Unknown asset role {role!r}"}), 400

    try:
        kind = media_kind(Path(f.filename))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if role == "primary" and kind != "video":
        return jsonify({"error": "Primary media must be a video"}), 400
    if role == "logo" and kind != "image":
        return jsonify({"error": "Logo must be an image"}), 400

    project_id = request.form.get("project_id")
    if project_id:
        project = _get_project(project_id)
        if project is None:
            return _not_found()
    else:
        project_id = uuid.uuid4().hex[:12]
        project_dir = Path(current_app.config["WORK_DIR"]) / project_id
        project_dir.mkdir(parents=True, exist_ok=True)
        timeline = TimelineStore()
        project = {
            "dir": project_dir,
            "assets": {},
            "timeline": timeline,
            "drag": DragSession(timeline.draft),
            "probe": None,
            "status": "editing",
        }
        _projects[project_id] = project

    ext = Path(f.filename).suffix
    asset_path = project["dir"] / f"{role}{ext}"
    f.save(asset_path)

    if role == "primary":
        try:
            probe = ffutil.probe(asset_path)
        except (subprocess.CalledProcessError, ValueError) as e:
            asset_path.unlink(missing_ok=True)
            return jsonify({"error": f"Could not read video: {e}"}), 400
        project["probe"] = probe
        project["timeline"].duration = probe.duration

    project["assets"][role] = asset_path
    return jsonify({"project_id": project_id, "role": role, "filename": f.filename})


@bp.route("/api/projects/<project_id>")
def project_state(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()
    resp = _project_view(project)
    if project["status"] == "error":
        resp["error"] = project.get("error")
    return jsonify(resp)


@bp.route("/api/projects/<project_id>/draft", methods=["PATCH"])
def update_draft(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()

    draft: Draft = project["timeline"].draft
    try:
        changes = _coerce_draft_changes(request.get_json(silent=True) or {})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    # Validate the resulting interval before touching the draft so a rejected
    # request leaves it unchanged.
    start = changes.get("start", draft.start)
    end = changes.get("end", draft.end)
    if start < 0:
        raise ValidationError("Start time cannot be negative.")
    if end <= start:
        raise ValidationError("End time must be after start time.")

    # Widen the interval first so each guarded setter sees a valid pair.
    if end > draft.end:
        draft.set_end(end)
        draft.set_start(start)
    else:
        draft.set_start(start)
        draft.set_end(end)
    for key, value in changes.items():
        if key not in ("start", "end"):
            setattr(draft, key, value)
    return jsonify(asdict(draft))


def _coerce_draft_changes(data) -> dict:
    """Type-check a draft PATCH body into field updates; raises ValueError."""
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    changes = {}
    if "preset" in data:
        if data["preset"] not in POSITION_PRESETS:
            raise ValueError(f"Unknown preset {data['preset']!r}")
        changes["x"], changes["y"] = POSITION_PRESETS[data["preset"]]
    for key in _TEXT_FIELDS:
        if key in data:
            if not isinstance(data[key], str):
                raise ValueError(f"{key} must be a string")
            changes[key] = data[key]
    for key in _NUMBER_FIELDS:
        if key in data:
            changes[key] = _number(key, data[key])
    if "font_size" in changes and changes["font_size"] <= 0:
        raise ValueError("font_size must be positive")
    return changes


def _number(key: str, value) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number") from None
    if not math.isfinite(number):
        raise ValueError(f"{key} must be finite")
    return number


def _point(data) -> Point:
    return Point(_number("x", data["x"]), _number("y", data["y"]))


def _bounds(data) -> Bounds:
    bounds = Bounds(*(_number(k, data[k]) for k in ("left", "top", "width", "height")))
    if bounds.width <= 0 or bounds.height <= 0:
        raise ValueError("Bounds must have a positive size")
    return bounds


@bp.route("/api/projects/<project_id>/draft/drag", methods=["POST"])
def drag_draft(project_id: str):
    """Drive the draft's drag session with a press, move or release action."""
    project = _get_project(project_id)
    if project is None:
        return _not_found()

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400
    session: DragSession = project["drag"]
    try:
        match data.get("action"):
            case "press":
                session.press(_point(data["pointer"]), _bounds(data["element"]))
            case "move":
                session.move(_point(data["pointer"]), _bounds(data["container"]))
            case "release":
                session.release()
            case action:
                return jsonify({"error": f"Unknown drag action {action!r}"}), 400
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid drag request: {e}"}), 400

    draft: Draft = project["timeline"].draft
    return jsonify({"state": session.state.value, "x": draft.x, "y": draft.y})


@bp.route("/api/projects/<project_id>/captions", methods=["POST"])
def commit_caption(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()
    caption = project["timeline"].commit()
    return jsonify(asdict(caption)), 201


@bp.route("/api/projects/<project_id>/captions/<caption_id>", methods=["DELETE"])
def remove_caption(project_id: str, caption_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()
    project["timeline"].remove(caption_id)
    return "", 204


@bp.route("/api/projects/<project_id>/export", methods=["POST"])
def start_export(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()

    if project["status"] == "exporting":
        return jsonify({"error": "An export is already running"}), 409
    if "primary" not in project["assets"]:
        return jsonify({"error": "Please upload a video first."}), 400

    try:
        config = OutputConfig(**(request.get_json() or {}))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    output_path = project["dir"] / default_output_name()
    progress_queue: queue.Queue = queue.Queue()
    project["progress_queue"] = progress_queue
    project["status"] = "exporting"
    project["error"] = None

    def run():
        try:
            def on_progress(stage: str, percent: float):
                progress_queue.put({"stage": stage, "progress": round(percent, 1)})

            assets = project["assets"]
            primary = VideoSource(assets["primary"], project["probe"], seek_timeout=config.seek_timeout)
            secondary = (
                load_secondary(assets.get("secondary"), seek_timeout=config.seek_timeout)
                if config.template == "split"
                else None
            )
            logo = load_logo(assets.get("logo"))

            pipeline = ExportPipeline(project["timeline"], config, on_progress=on_progress)
            result = pipeline.run(primary, output_path, secondary=secondary, logo=logo)
            project["result"] = {
                "output_path": str(result.output_path),
                "frames_rendered": result.frames_rendered,
                "width": result.width,
                "height": result.height,
            }
            project["status"] = "done"
        except OverlayForgeError as e:
            logger.warning("Export of %s failed: %s", project_id, e)
            project["status"] = "error"
            project["error"] = e.message
        except Exception as e:
            logger.exception("Export of %s failed", project_id)
            project["status"] = "error"
            project["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/projects/<project_id>/progress")
def progress_stream(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()

    q = project.get("progress_queue")
    if q is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if project["status"] == "error":
                    data = json.dumps({"error": project["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 100.0,
                        "result": project.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/projects/<project_id>/result")
def download_result(project_id: str):
    project = _get_project(project_id)
    if project is None:
        return _not_found()

    if project["status"] != "done":
        return jsonify({"error": "Export not complete"}), 409

    output_path = Path(project["result"]["output_path"])
    return send_file(output_path, as_attachment=True, download_name=output_path.name)
