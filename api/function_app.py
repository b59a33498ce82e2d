import logging

import azure.functions as func

from immodiag import handlers
from immodiag.services import Services

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

# One set of process-wide state (rate limiter, cache, HTTP session) per worker.
services = Services.create()
logging.info("🏠 immodiag ready (cache ttl %ss, %d calls / %ss)",
             services.settings.cache_ttl_seconds, services.settings.rate_max_calls,
             services.settings.rate_window_seconds)

DATA_METHODS = ["GET", "POST", "OPTIONS"]


@app.route(route="health", methods=["GET"])
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.health(req, services)


@app.route(route="summary", methods=DATA_METHODS)
def summary_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.summary(req, services)


@app.route(route="commune", methods=DATA_METHODS)
def commune_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.commune(req, services)


@app.route(route="address", methods=DATA_METHODS)
def address_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.address(req, services)


@app.route(route="georisques", methods=DATA_METHODS)
def georisques_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.georisques(req, services)


@app.route(route="gpu", methods=DATA_METHODS)
def gpu_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.gpu(req, services)


@app.route(route="gpu-doc", methods=DATA_METHODS)
def gpu_doc_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.gpu_doc(req, services)


@app.route(route="dvf", methods=DATA_METHODS)
def dvf_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.dvf(req, services)


@app.route(route="dvf-insights", methods=DATA_METHODS)
def dvf_insights_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.dvf_insights(req, services)


@app.route(route="envinfo", methods=DATA_METHODS)
def envinfo_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.envinfo(req, services)


# GET is routed too so that ?ping=1 works and other methods get a JSON 405.
@app.route(route="compose", methods=DATA_METHODS)
def compose_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.compose(req, services)


@app.route(route="ping-llm", methods=DATA_METHODS)
def ping_llm_endpoint(req: func.HttpRequest) -> func.HttpResponse:
    return handlers.ping_llm(req, services)
