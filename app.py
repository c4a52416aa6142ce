#!/usr/bin/env python3
"""
Flask web server for the batch screenshot tool
"""

import logging
import math
import os
import subprocess
import sys
import threading
import traceback
import uuid
import zipfile
from pathlib import Path
from flask import Flask, Response, request, jsonify, send_file, send_from_directory
from flask_cors import CORS

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

BASE_DIR = Path(__file__).parent.resolve()
SCREENSHOTS_DIR = BASE_DIR / "screenshots"

MAX_OUTPUT_LINES = 3000

# Store running processes
running_tasks = {}


def _python_command():
    venv_python = BASE_DIR / "venv" / "bin" / "python"
    # Use venv python if it exists, otherwise the current interpreter
    if venv_python.exists():
        return str(venv_python)
    return sys.executable


def build_command(urls_file, output_dir, options):
    """Build the screenshot_batch.py command line for one job."""
    cmd = [
        _python_command(), str(BASE_DIR / "screenshot_batch.py"),
        "-f", str(urls_file),
        "-o", str(output_dir),
        "-threads", str(options.get("threads", 4)),
        "-t", str(options.get("timeout", 0)),
    ]
    if options.get("proxy"):
        cmd += ["-proxy", options["proxy"]]
    if options.get("headers"):
        cmd += ["-H", options["headers"]]
    return cmd


def run_screenshot_task(task_id, url_list, output_dir, options):
    """Run a screenshot batch for url_list in a subprocess and collect its output."""
    task = running_tasks[task_id]
    try:
        urls_file = Path(output_dir) / "urls.txt"
        with open(urls_file, "w", encoding="utf-8") as f:
            for u in url_list:
                f.write(u + "\n")

        process = subprocess.Popen(
            build_command(urls_file, output_dir, options),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            cwd=str(BASE_DIR)
        )
        task["process"] = process

        # Read output line by line
        for line in process.stdout:
            line = line.strip()
            if line:
                task["output"].append(line)
                if len(task["output"]) > MAX_OUTPUT_LINES:
                    task["output"].pop(0)

        process.wait()

        screenshot_count = len(list(Path(output_dir).glob("*.png")))
        task["screenshot_count"] = screenshot_count

        if process.returncode != 0:
            task["status"] = "error"
            last_output = task["output"][-15:]
            err_msg = f"Process exited with code {process.returncode}."
            if last_output:
                err_msg += " Last output:\n" + "\n".join(last_output)
            task["error"] = err_msg
            logger.error("Screenshot task %s failed: %s", task_id, err_msg)
        else:
            task["status"] = "completed"

    except Exception as e:
        tb_lines = traceback.format_exc().strip().split("\n")
        task["status"] = "error"
        task["error"] = str(e)
        task["output"].extend([f"Exception: {e}"] + tb_lines)
        logger.exception("Screenshot task %s raised exception", task_id)


def _parse_options(data):
    """Validate optional job settings. Returns (options, error message)."""
    options = {}

    threads = data.get("threads", 4)
    if not isinstance(threads, int) or isinstance(threads, bool) or threads < 1:
        return None, "'threads' must be a positive integer"
    options["threads"] = threads

    timeout = data.get("timeout", 0)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout < 0:
        return None, "'timeout' must be a non-negative number of seconds"
    # Round fractions up so a short limit never becomes -t 0 (unlimited).
    options["timeout"] = math.ceil(timeout)

    proxy = data.get("proxy") or ""
    if not isinstance(proxy, str):
        return None, "'proxy' must be a string"
    options["proxy"] = proxy.strip()

    headers = data.get("headers") or ""
    if isinstance(headers, dict):
        if any("," in str(k) or "," in str(v) or ":" in str(k) for k, v in headers.items()):
            return None, "header names must not contain ':' or ',' and values must not contain ','"
        headers = ",".join(f"{k}:{v}" for k, v in headers.items())
    if not isinstance(headers, str):
        return None, "'headers' must be an object or a 'key:value,...' string"
    options["headers"] = headers

    return options, None


@app.route('/api/screenshot', methods=['POST'])
def start_screenshot():
    """Start a screenshot task"""
    data = request.get_json(silent=True) or {}
    url = data.get('url')
    url_list = data.get('urls')

    if url_list is not None:
        if not isinstance(url_list, list):
            return jsonify({"error": "'urls' must be an array of URLs"}), 400
    elif isinstance(url, str) and url.strip():
        url_list = [url]
    else:
        return jsonify({"error": "Provide 'url' or 'urls'"}), 400

    # Normalize: strings only, strip, require http(s)
    url_list = [u.strip() for u in url_list if isinstance(u, str) and u.strip().startswith(('http://', 'https://'))]
    if not url_list:
        return jsonify({"error": "Provide at least one valid URL (http:// or https://)"}), 400

    options, error = _parse_options(data)
    if error:
        return jsonify({"error": error}), 400

    task_id = str(uuid.uuid4())

    # Create output directory for this task
    output_dir = SCREENSHOTS_DIR / task_id
    output_dir.mkdir(parents=True, exist_ok=True)

    running_tasks[task_id] = {"status": "running", "output": [], "url_count": len(url_list)}

    thread = threading.Thread(
        target=run_screenshot_task,
        args=(task_id, url_list, str(output_dir), options),
        daemon=True,
    )
    thread.start()

    return jsonify({
        "task_id": task_id,
        "status": "started",
        "url_count": len(url_list),
        "output_dir": task_id
    })


@app.route('/api/status/<task_id>')
def get_status(task_id):
    """Get status of a screenshot task"""
    if task_id not in running_tasks:
        return jsonify({"error": "Task not found"}), 404

    task = running_tasks[task_id]
    response = {
        "status": task["status"],
        "output": task.get("output", [])[-1500:],
        "screenshot_count": task.get("screenshot_count", 0)
    }

    if "error" in task:
        response["error"] = task["error"]

    return jsonify(response)


@app.route('/api/log/<task_id>')
def get_log(task_id):
    """Return full run log as plain text (for download)."""
    if task_id not in running_tasks:
        return jsonify({"error": "Task not found"}), 404
    lines = running_tasks[task_id].get("output", [])
    text = "\n".join(lines) if lines else "(no log output)"
    return Response(
        text,
        mimetype="text/plain",
        headers={"Content-Disposition": f"attachment; filename=screenshot_log_{task_id}.txt"},
    )


def _task_dir(task_id):
    """Output directory of a known task, or None."""
    if task_id not in running_tasks:
        return None
    task_dir = SCREENSHOTS_DIR / task_id
    return task_dir if task_dir.is_dir() else None


@app.route('/api/screenshots/<task_id>')
def list_screenshots(task_id):
    """List screenshots for a task"""
    task_dir = _task_dir(task_id)
    if task_dir is None:
        return jsonify({"error": "Task directory not found"}), 404

    screenshots = [
        {"filename": png_file.name, "size": png_file.stat().st_size}
        for png_file in sorted(task_dir.glob("*.png"))
    ]
    return jsonify({"screenshots": screenshots})


@app.route('/api/screenshots/<task_id>/<filename>')
def get_screenshot(task_id, filename):
    """Serve a screenshot file"""
    task_dir = _task_dir(task_id)
    if task_dir is None:
        return jsonify({"error": "Task directory not found"}), 404

    return send_from_directory(str(task_dir), filename)


@app.route('/api/download/<task_id>/<filename>')
def download_screenshot(task_id, filename):
    """Download a single screenshot file"""
    task_dir = _task_dir(task_id)
    if task_dir is None:
        return jsonify({"error": "Task directory not found"}), 404

    file_path = task_dir / filename
    if not file_path.is_file():
        return jsonify({"error": "File not found"}), 404

    return send_from_directory(
        str(task_dir),
        filename,
        as_attachment=True,
        download_name=filename,
        mimetype='image/png'
    )


@app.route('/api/download-all/<task_id>')
def download_all(task_id):
    """Download all screenshots as a zip file"""
    task_dir = _task_dir(task_id)
    if task_dir is None:
        return jsonify({"error": "Task directory not found"}), 404

    png_files = sorted(task_dir.glob("*.png"))
    if not png_files:
        return jsonify({"error": "No screenshots found"}), 404

    zip_path = SCREENSHOTS_DIR / f"{task_id}.zip"

    try:
        with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for png_file in png_files:
                zipf.write(png_file, png_file.name)
    except OSError as e:
        return jsonify({"error": f"Failed to create zip file: {e}"}), 500

    return send_file(
        str(zip_path),
        as_attachment=True,
        download_name=f"screenshots_{task_id}.zip",
        mimetype='application/zip'
    )


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5001))
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    SCREENSHOTS_DIR.mkdir(parents=True, exist_ok=True)
    print("Starting screenshot web server...")
    print(f"Open http://localhost:{port} in your browser")
    app.run(debug=debug, host='0.0.0.0', port=port)
