"""Minimal HTTP client for the live API tests (stdlib only, no requests dependency)."""

import json
import urllib.error
import urllib.request


def _request(method, url, json_body=None, headers=None):
    data = json.dumps(json_body).encode() if json_body is not None else None
    req = urllib.request.Request(url, data=data, method=method)
    if data is not None:
        req.add_header("Content-Type", "application/json")
    for key, value in (headers or {}).items():
        req.add_header(key, value)
    try:
        with urllib.request.urlopen(req, timeout=10) as r:
            raw = r.read().decode()
            return r.getcode(), json.loads(raw) if raw else {}
    except urllib.error.HTTPError as e:
        body = e.read().decode()
        try:
            return e.code, json.loads(body)
        except ValueError:
            return e.code, {"detail": body}


def get(url, headers=None):
    code, body = _request("GET", url, headers=headers)
    return _Response(code, body)


def post(url, json_body, headers=None):
    code, body = _request("POST", url, json_body, headers)
    return _Response(code, body)


def actor_headers(role, actor_id="u1", email="user@example.com", region=None):
    headers = {"X-Actor-Id": actor_id, "X-Actor-Email": email, "X-Actor-Role": role}
    if region:
        headers["X-Actor-Region"] = region
    return headers


class _Response:
    def __init__(self, status_code, json_body):
        self.status_code = status_code
        self._json = json_body

    def json(self):
        return self._json
