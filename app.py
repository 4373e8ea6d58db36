from flask import Flask, request, jsonify
from config import AppConfig, FetchConfig
from models import AnalysisLogEntry, Network, Severity, highest_severity, max_severity, serialize_findings
from scanner import scan_url
from scraper import VideoResolver, ResolverError, ExtractionFailedError
from storage import LogStore, StorageError
import json
import logging

settings = AppConfig.from_env()

app = Flask(__name__)
app.config["FETCH_CONFIG"] = FetchConfig.from_env()
app.config["LOG_STORE"] = LogStore(settings.db_path)
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("AnalyzerAPI")

REQUIRED_LOG_FIELDS = ("originalUrl", "finalUrl", "network", "maxSeverity", "findings")


def _resolver():
    return VideoResolver(app.config["FETCH_CONFIG"])


def _store():
    return app.config["LOG_STORE"]


def _error_response(error):
    # Input problems are the caller's fault; exhaustion means nothing was found
    status = 404 if isinstance(error, ExtractionFailedError) else 400
    return jsonify({"error": str(error)}), status


def _read_url():
    data = request.get_json(silent=True) or {}
    url = data.get('url')
    return url.strip() if isinstance(url, str) else ''


@app.route('/api/extract', methods=['POST'])
def extract():
    url = _read_url()
    if not url:
        return jsonify({"error": "URL is required"}), 400

    logger.info(f"Extract request: {url}")
    try:
        video = _resolver().resolve(url)
    except ResolverError as e:
        logger.warning(f"Extraction failed for {url}: {e}")
        return _error_response(e)
    except Exception as e:
        logger.error(f"System Error for {url}: {e}")
        return jsonify({"error": "Internal error while extracting video"}), 500

    logger.info(f"Successfully extracted: {video.title}")
    return jsonify(video.to_dict())


@app.route('/api/analyze', methods=['POST'])
def analyze():
    """Resolve the post, scan the resolved video URL and record the outcome."""
    url = _read_url()
    if not url:
        return jsonify({"error": "URL is required"}), 400

    try:
        video = _resolver().resolve(url)
    except ResolverError as e:
        logger.warning(f"Extraction failed for {url}: {e}")
        return _error_response(e)
    except Exception as e:
        logger.error(f"System Error for {url}: {e}")
        return jsonify({"error": "Internal error while extracting video"}), 500

    findings = scan_url(video.mp4_url, app.config["FETCH_CONFIG"])
    result = video.to_dict()
    result.update({
        "network": video.network.value,
        "vulnerabilities": [f.to_dict() for f in findings],
        "maxSeverity": max_severity(findings).value,
    })

    # Logging is best effort: the analysis result goes back to the caller either way
    try:
        _store().append(AnalysisLogEntry.from_analysis(url, video, findings))
    except Exception as e:
        logger.error(f"Could not record analysis log for {url}: {e}")

    return jsonify(result)


@app.route('/api/logs', methods=['GET'])
def list_logs():
    try:
        entries = _store().list_entries()
    except StorageError as e:
        logger.error(f"Error fetching logs: {e}")
        return jsonify({"error": "Failed to fetch logs"}), 500
    return jsonify([entry.to_dict() for entry in entries])


def _findings_severities(findings):
    """Severities of a client-supplied findings list, or JSON text of one."""
    if isinstance(findings, str):
        try:
            findings = json.loads(findings)
        except ValueError:
            raise ValueError("findings is not valid JSON")
    if not isinstance(findings, list):
        raise ValueError("findings must be a list or a JSON string")
    severities = []
    for item in findings:
        if not isinstance(item, dict):
            raise ValueError("each finding must be an object")
        try:
            severities.append(Severity(item.get('severity')))
        except ValueError:
            raise ValueError(f"unknown finding severity: {item.get('severity')!r}")
    return severities


@app.route('/api/logs', methods=['POST'])
def create_log():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        body = {}

    missing = [f for f in REQUIRED_LOG_FIELDS if body.get(f) is None or body.get(f) == '']
    if missing:
        return jsonify({"error": f"Missing required fields for log entry: {', '.join(missing)}"}), 400

    wrong_type = [f for f in ("originalUrl", "finalUrl") if not isinstance(body[f], str)]
    wrong_type += [f for f in ("title", "thumbnail") if body.get(f) is not None and not isinstance(body[f], str)]
    size = body.get('sizeApprox')
    if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
        wrong_type.append('sizeApprox')
    if wrong_type:
        return jsonify({"error": f"Invalid field types for log entry: {', '.join(wrong_type)}"}), 400

    try:
        network = Network(body['network'])
        severity = Severity(body['maxSeverity'])
    except ValueError:
        return jsonify({"error": "Unknown network or maxSeverity value"}), 400

    findings = body['findings']
    try:
        expected = highest_severity(_findings_severities(findings))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if severity != expected:
        return jsonify({"error": f"maxSeverity {severity.value} does not match findings (expected {expected.value})"}), 400

    entry = AnalysisLogEntry(
        original_url=body['originalUrl'],
        final_url=body['finalUrl'],
        network=network,
        max_severity=severity,
        findings=serialize_findings(findings),
        title=body.get('title'),
        thumbnail=body.get('thumbnail'),
        size_approx=size,
    )
    try:
        created = _store().append(entry)
    except StorageError as e:
        logger.error(f"Error creating log: {e}")
        return jsonify({"error": "Failed to create log entry"}), 500
    return jsonify(created.to_dict()), 201


if __name__ == '__main__':
    app.run(host=settings.host, port=settings.port, debug=settings.debug)
