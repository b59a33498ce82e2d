#!/usr/bin/env python3
"""
Simple local development server for the immodiag API
Run this instead of Azure Functions Core Tools for quick local testing
"""
import sys
import os
import json
from flask import Flask, jsonify, request
from flask_cors import CORS

# Load local.settings.json and set environment variables
settings_path = os.path.join(os.path.dirname(__file__), 'local.settings.json')
if os.path.exists(settings_path):
    with open(settings_path) as f:
        settings = json.load(f)
        for key, value in settings.get('Values', {}).items():
            os.environ[key] = str(value)
    print("✅ Loaded local.settings.json")

# Add api directory to path so we can import the handlers
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'api'))

from immodiag import handlers
from immodiag.services import Services

ROUTES = {
    'health': handlers.health,
    'summary': handlers.summary,
    'commune': handlers.commune,
    'address': handlers.address,
    'georisques': handlers.georisques,
    'gpu': handlers.gpu,
    'gpu-doc': handlers.gpu_doc,
    'dvf': handlers.dvf,
    'dvf-insights': handlers.dvf_insights,
    'envinfo': handlers.envinfo,
    'compose': handlers.compose,
    'ping-llm': handlers.ping_llm,
}

services = Services.create()

app = Flask(__name__)
CORS(app)  # Enable CORS for local development

# Mock Azure Functions HttpRequest for local dev
class MockRequest:
    def __init__(self, flask_request):
        self.method = flask_request.method
        self.params = flask_request.args
        self.url = flask_request.url
        self.headers = dict(flask_request.headers)
        self._body = flask_request.get_data()

    def get_json(self):
        if not self._body:
            raise ValueError("HTTP request does not contain valid JSON data")
        return json.loads(self._body)

@app.route('/api/<route>', methods=['GET', 'POST', 'OPTIONS', 'PUT', 'DELETE'])
def api_proxy(route):
    """Proxy to the handler registered for this route"""
    handler = ROUTES.get(route)
    if handler is None:
        return jsonify({"ok": False, "error": f"Unknown route '{route}'"}), 404
    try:
        response = handler(MockRequest(request), services)
        return response.get_body().decode('utf-8'), response.status_code, dict(response.headers)
    except Exception as e:
        return jsonify({"ok": False, "error": "Server error", "details": str(e)}), 500

if __name__ == '__main__':
    print("\n" + "="*70)
    print("🏠 IMMODIAG - Local Development Server")
    print("="*70)
    print(f"\n✅ Server starting at: http://localhost:5001")
    print(f"\n📋 API Endpoints:")
    for name in ROUTES:
        print(f"   - http://localhost:5001/api/{name}")
    print(f"\n⚠️  Set GEMINI_API_KEY in local.settings.json to use /api/compose")
    print(f"\n🛑 Press Ctrl+C to stop the server")
    print("="*70 + "\n")

    app.run(host='0.0.0.0', port=5001, debug=True)
