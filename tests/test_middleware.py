from tests import helper
from tests.util import wsgi
import rooter
import pytest


basic_handler = helper.basic_handler
expect_response = helper.assert_produces_response


def make_request(uri: str, method: str = "GET", **env) -> rooter.Request:
    return rooter.Request.from_wsgi(wsgi.Request(uri, method=method, env=env).environ())


class Downstream:
    """Next handler that counts calls and answers with a fixed response."""

    def __init__(self, **response_kwargs):
        self.calls = 0
        self.response_kwargs = response_kwargs

    def handle_request(self, request: rooter.Request) -> rooter.Response:
        self.calls += 1
        return rooter.Response(**self.response_kwargs)


def test_captured_output_becomes_body():
    router = rooter.Router()

    @router.get("/page")
    def page(ctx):
        ctx.write("<p>hi</p>")

    response = router.process(make_request("/page"), Downstream())
    assert response.text == "<p>hi</p>"
    assert response.headers["Content-Type"] == "text/html"


def test_existing_content_type_kept():
    router = rooter.Router()
    router.get("/page", basic_handler("plain"))
    downstream = Downstream(h={"Content-Type": "text/plain"})

    response = router.process(make_request("/page"), downstream)
    assert response.text == "plain"
    assert response.headers.get_all("Content-Type") == ["text/plain"]


def test_body_is_appended_to_downstream_body():
    router = rooter.Router()
    router.get("/page", basic_handler(" world"))

    response = router.process(make_request("/page"),
                              lambda request: rooter.Response("hello", code=201))
    assert response.code == 201
    assert response.text == "hello world"


def test_returned_response_passes_through():
    router = rooter.Router()
    own = rooter.Response("mine", code=202)
    router.get("/own", lambda ctx: own)
    downstream = Downstream()

    assert router.process(make_request("/own"), downstream) is own
    assert downstream.calls == 0


def test_structured_value_written_as_json():
    router = rooter.Router()
    router.get("/data", basic_handler({"ok": True}))

    response = router.process(make_request("/data"), Downstream())
    assert response.text == '{"ok": true}'
    assert response.headers["Content-Type"] == "application/json"


def test_downstream_fetched_once():
    router = rooter.Router()

    @router.get("/page")
    def page(ctx):
        ctx.response().headers["X-Seen"] = "1"
        return "body"

    downstream = Downstream()
    response = router.process(make_request("/page"), downstream)
    assert downstream.calls == 1
    assert response.headers["X-Seen"] == "1"
    assert response.text == "body"


def test_context_carries_request():
    router = rooter.Router()
    seen = []
    router.post(r"/items/(\w+)", lambda ctx, name: seen.append(ctx) or name)
    request = make_request("/items/box?q=1", method="POST")

    assert router.process(request, Downstream()).text == "box"
    assert seen[0].request is request
    assert seen[0].chained
    assert seen[0].request.query_vars == {"q": "1"}


def test_default_404_marks_downstream_response():
    router = rooter.Router()
    router.get("/x", basic_handler("x"))

    response = router.process(make_request("/nowhere"), Downstream(content="downstream"))
    assert response.code == 404
    assert response.text == "downstream"


def test_custom_404_goes_through_materialization():
    router = rooter.Router(lambda ctx, method, path: f"no {method} {path}")

    response = router.process(make_request("/gone", method="DELETE"), Downstream())
    assert response.code == 200
    assert response.text == "no DELETE /gone"
    assert response.headers["Content-Type"] == "text/html"


def test_next_handler_must_return_response():
    router = rooter.Router()
    router.get("/x", basic_handler("x"))

    with pytest.raises(rooter.RouterError):
        router.process(make_request("/x"), lambda request: "not a response")


def _downstream_app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain"), ("X-App", "down")])
    return [b"[", b"app", b"]"]


def test_wrap_wsgi_app():
    app = rooter.Router()
    app.get("/page", basic_handler("+router"))
    app.get("/json", basic_handler([1, 2]))
    wrapped = app.wrap(_downstream_app)

    expect_response(wrapped, "/page", 200, "[app]+router",
                    headers={"Content-Type": "text/plain", "X-App": "down"})
    expect_response(wrapped, "/nothing", 404, "[app]")


def test_wrap_handler_abort():
    app = rooter.Router()

    @app.get("/secret")
    def secret(ctx):
        rooter.abort(403, "Forbidden")

    expect_response(app.wrap(_downstream_app), "/secret", 403, "")


def test_wsgi_handler_adapter():
    request = make_request("/")
    response = rooter.WsgiHandler(_downstream_app).handle_request(request)
    assert response.code == 200
    assert response.body == b"[app]"
    assert response.headers["X-App"] == "down"
