"""
Flask web server wrapping ssp_templater for deployment.

Endpoints:
    GET  /health           → Health check (200 OK / 503 if the OpenControl workspace is missing)
    POST /fill             → Upload an SSP .docx, returns the filled .docx
    POST /diff             → Upload an SSP .docx, returns the differences as JSON
"""

import logging
import os
import tempfile
from pathlib import Path

from flask import Flask, request, send_file, jsonify, after_this_request

from opencontrols import OpenControlError, load_from
from ssp_templater import SSP, TemplaterError, diff_ssp, fill_ssp

app = Flask(__name__)
app.config["OPENCONTROLS_DIR"] = Path(os.environ.get("OPENCONTROLS_DIR", "opencontrols"))

# Configure logging so output is visible in gunicorn logs
gunicorn_logger = logging.getLogger("gunicorn.error")
app.logger.handlers = gunicorn_logger.handlers or logging.getLogger().handlers
app.logger.setLevel(gunicorn_logger.level or logging.INFO)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
log = app.logger

DOCX_MIMETYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@app.route("/health", methods=["GET"])
def health():
    workspace = Path(app.config["OPENCONTROLS_DIR"])
    if not workspace.is_dir():
        log.error("Health check FAILED: OpenControl workspace not found at %s", workspace)
        return jsonify({"status": "error", "workspace_loaded": False}), 503
    return jsonify({"status": "ok", "workspace_loaded": True}), 200


def _uploaded_docx():
    """Return the uploaded file, or an error response tuple."""
    if "file" not in request.files:
        return None, (jsonify({"error": "No file uploaded. Send a .docx as 'file'."}), 400)

    uploaded = request.files["file"]
    if not uploaded.filename.lower().endswith(".docx"):
        return None, (jsonify({"error": "File must be a .docx document."}), 400)
    return uploaded, None


@app.route("/fill", methods=["POST"])
def fill():
    uploaded, error = _uploaded_docx()
    if error:
        return error

    tmp_in = tempfile.NamedTemporaryFile(suffix=".docx", delete=False)
    tmp_out = tempfile.NamedTemporaryFile(suffix=".docx", delete=False)
    tmp_in.close()
    tmp_out.close()
    try:
        uploaded.save(tmp_in.name)
        log.info("Filling SSP: %s", uploaded.filename)
        data = load_from(str(app.config["OPENCONTROLS_DIR"]))
        with SSP.load(tmp_in.name) as ssp:
            fill_ssp(ssp, data)
            ssp.save(tmp_out.name)

        @after_this_request
        def cleanup(response):
            _safe_remove(tmp_out.name)
            return response

        return send_file(
            tmp_out.name,
            as_attachment=True,
            download_name="filled_ssp.docx",
            mimetype=DOCX_MIMETYPE,
        )
    except (TemplaterError, ValueError) as exc:
        log.warning("Unable to fill %s: %s", uploaded.filename, exc)
        _safe_remove(tmp_out.name)
        return jsonify({"error": str(exc)}), 422
    except OpenControlError:
        log.exception("Error loading OpenControl workspace")
        _safe_remove(tmp_out.name)
        return jsonify({"error": "Failed to load OpenControl workspace."}), 500
    except Exception:
        log.exception("Error filling document")
        _safe_remove(tmp_out.name)
        return jsonify({"error": "Failed to fill document."}), 500
    finally:
        _safe_remove(tmp_in.name)


@app.route("/diff", methods=["POST"])
def diff():
    uploaded, error = _uploaded_docx()
    if error:
        return error

    tmp_in = tempfile.NamedTemporaryFile(suffix=".docx", delete=False)
    tmp_in.close()
    try:
        uploaded.save(tmp_in.name)
        log.info("Diffing SSP: %s", uploaded.filename)
        data = load_from(str(app.config["OPENCONTROLS_DIR"]))
        with SSP.load(tmp_in.name) as ssp:
            reports = diff_ssp(ssp, data)
        return jsonify({
            "count": len(reports),
            "differences": [str(report) for report in reports],
        }), 200
    except (TemplaterError, ValueError) as exc:
        log.warning("Unable to diff %s: %s", uploaded.filename, exc)
        return jsonify({"error": str(exc)}), 422
    except OpenControlError:
        log.exception("Error loading OpenControl workspace")
        return jsonify({"error": "Failed to load OpenControl workspace."}), 500
    except Exception:
        log.exception("Error diffing document")
        return jsonify({"error": "Failed to diff document."}), 500
    finally:
        _safe_remove(tmp_in.name)


def _safe_remove(path):
    try:
        os.remove(path)
    except OSError:
        pass


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
