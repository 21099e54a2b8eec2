"""
Project Portfolio Dashboard — API Server
=========================================
Flask API backend for the portfolio dashboard frontend.
Handles workbook upload, project extraction, filtered analytics and PDF
export.  Parsed projects live in memory, per browser session.

Usage:
    python server.py
    Then open http://localhost:5000 in your browser.
"""

import io
import base64
import binascii
import logging
import threading
import uuid
from functools import wraps

from flask import Flask, request, jsonify, send_file, session
from flask_cors import CORS

import config
from analytics import (
    average_stage_durations,
    build_dashboard,
    calculate_kpis,
    filter_projects,
    group_by_squad,
    unique_squads,
)
from pdf_export import generate_portfolio_pdf
from workbook_parser import merge_projects, parse_session

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────
# APP SETUP
# ─────────────────────────────────────────────────────────────

app = Flask(__name__)
app.secret_key = config.FLASK_SECRET_KEY
app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_MB * 1024 * 1024

CORS(app, supports_credentials=True)

# In-memory project store keyed by session ID
# In production, use Redis or similar
_project_store = {}
_store_lock = threading.Lock()

FILTER_PARAMS = ("search", "status", "squad", "factory", "project")


def _get_session_id():
    """Get or create a session ID."""
    if "sid" not in session:
        session["sid"] = uuid.uuid4().hex
    return session["sid"]


def _session_projects():
    with _store_lock:
        return list(_project_store.get(_get_session_id(), []))


def _filters_from(source):
    return {k: source.get(k) for k in FILTER_PARAMS if source.get(k)}


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get("authenticated"):
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated_function


def _decode_upload(fdata):
    """Strip an optional data-URL header and base64-decode."""
    if "," in fdata:
        _, fdata = fdata.split(",", 1)
    return base64.b64decode(fdata)


def _collect_uploads():
    """Files from a JSON base64 payload or a multipart form, as (name, bytes)."""
    uploads = []
    errors = []

    if request.is_json:
        data = request.get_json(silent=True) or {}
        for f in data.get("files", []):
            fname = f.get("name")
            fdata = f.get("data")
            if not fname or not fdata:
                continue
            try:
                uploads.append((fname, _decode_upload(fdata)))
            except (binascii.Error, ValueError) as e:
                errors.append({"file": fname, "error": f"Invalid base64 payload: {e}"})

    if not uploads and "files" in request.files:
        for f in request.files.getlist("files"):
            if f.filename:
                uploads.append((f.filename, f.read()))

    return uploads, errors


# ─────────────────────────────────────────────────────────────
# ROUTES
# ─────────────────────────────────────────────────────────────

@app.route("/health")
def health():
    return jsonify({"status": "ok"})


@app.route("/login", methods=["POST"])
def login():
    """Mark the session authenticated when the access code matches."""
    data = request.get_json(silent=True) or request.form
    if data.get("password") == config.APP_PASSWORD:
        session["authenticated"] = True
        _get_session_id()
        return jsonify({"status": "ok"})
    return jsonify({"error": "Invalid access code"}), 401


@app.route("/logout", methods=["POST"])
def logout():
    """Clear session and stored projects."""
    sid = session.get("sid")
    if sid:
        with _store_lock:
            _project_store.pop(sid, None)
    session.clear()
    return jsonify({"status": "ok"})


@app.route("/api/upload", methods=["POST"])
@login_required
def upload_files():
    """Accept one or more workbooks (multipart or base64 JSON) and merge their projects."""
    uploads, errors = _collect_uploads()
    if not uploads and not errors:
        return jsonify({"error": "No files provided"}), 400

    to_parse = []
    for fname, file_bytes in uploads:
        if fname.lower().endswith(config.SPREADSHEET_EXTENSIONS):
            to_parse.append({"name": fname, "data": file_bytes})
        else:
            errors.append({"file": fname, "error": "Unsupported file type."})

    sid = _get_session_id()
    result = parse_session(to_parse, is_base64=False, max_workers=config.PARSE_WORKERS)
    errors.extend(result["errors"])

    # Counts reflect the store at merge time
    with _store_lock:
        merged, added, duplicates = merge_projects(_project_store.get(sid, []), result["projects"])
        _project_store[sid] = merged
        total = len(merged)
    duplicates += result["duplicates"]

    logger.info("Session %s: %d files, %d projects added, %d duplicates",
                sid, len(to_parse), added, duplicates)

    if not to_parse or all(r["status"] == "error" for r in result["files"]):
        return jsonify({"error": "All files failed to process", "details": errors}), 400

    return jsonify({
        "added": added,
        "duplicates": duplicates,
        "total_projects": total,
        "files": result["files"],
        "errors": errors if errors else None,
    })


@app.route("/api/projects", methods=["GET"])
@login_required
def list_projects():
    projects = filter_projects(_session_projects(), **_filters_from(request.args))
    return jsonify({
        "projects": [p.to_dict() for p in projects],
        "squads": unique_squads(_session_projects()),
    })


@app.route("/api/projects/<project_id>", methods=["GET"])
@login_required
def get_project(project_id):
    for p in _session_projects():
        if p.id == project_id:
            return jsonify(p.to_dict())
    return jsonify({"error": "Project not found"}), 404


@app.route("/api/dashboard", methods=["GET"])
@login_required
def dashboard():
    """KPIs, stage averages, burnup, timeline and squads for the filtered set."""
    projects = filter_projects(_session_projects(), **_filters_from(request.args))
    return jsonify(build_dashboard(projects))


@app.route("/api/squads", methods=["GET"])
@login_required
def squads():
    return jsonify(group_by_squad(_session_projects()))


@app.route("/api/export-pdf", methods=["POST"])
@login_required
def export_pdf():
    """Generate a PDF report from the filtered projects."""
    stored = _session_projects()
    if not stored:
        return jsonify({"error": "No data available. Please upload files first."}), 400

    data = request.get_json(silent=True) or {}
    projects = filter_projects(stored, **_filters_from(data))
    source_files = sorted({p.source_file for p in projects if p.source_file})

    try:
        pdf_bytes = generate_portfolio_pdf(
            projects=projects,
            kpis=calculate_kpis(projects),
            stage_durations=average_stage_durations(projects),
            source_files=source_files,
        )
    except Exception as e:
        logger.exception("PDF generation failed")
        return jsonify({"error": f"PDF generation failed: {e}"}), 500

    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name="Relatorio_Portfolio.pdf",
    )


@app.route("/api/reset", methods=["POST"])
@login_required
def reset():
    """Forget every project loaded in this session."""
    with _store_lock:
        _project_store.pop(_get_session_id(), None)
    return jsonify({"status": "ok"})


# ─────────────────────────────────────────────────────────────
# RUN
# ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Project Portfolio Dashboard on http://localhost:%d", config.PORT)
    app.run(host="0.0.0.0", port=config.PORT, debug=False, use_reloader=False)
