import os
from pathlib import Path

from fastapi import FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from .config import ENV_FILE, PROTOCOL_PORTS, default_port, load_config, save_setting
from .db import count_analyses, query_analyses

# ============================================
# Load environment
# ============================================
ENV_PATH = os.getenv("BOUNCE_ENV_FILE", ENV_FILE)
settings = load_config(ENV_PATH)

# ============================================
# FastAPI app setup
# ============================================
app = FastAPI(title="Bounce Connector")

app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def _logged_in(request: Request) -> bool:
    return "user" in request.session


def _current_settings():
    """Settings as of the env file right now; the form may have changed them"""
    return load_config(ENV_PATH)


# ============================================
# Routes
# ============================================

@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {"error": None})


@app.post("/login")
async def login(request: Request, password: str = Form(...)):
    if password == _current_settings().admin_pass:
        request.session["user"] = "admin"
        return RedirectResponse(url="/", status_code=302)
    return templates.TemplateResponse(request, "login.html", {"error": "Invalid password"})


@app.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/login")


@app.get("/", response_class=HTMLResponse)
async def dashboard(request: Request):
    if not _logged_in(request):
        return RedirectResponse(url="/login")

    current = _current_settings()
    return templates.TemplateResponse(request, "dashboard.html", {
        "settings": current,
        "ignored_mails": ", ".join(sorted(current.analyzer.ignored_mails)),
        "window_minutes": int(current.analyzer.recent_window.total_seconds() // 60),
        "protocols": list(PROTOCOL_PORTS),
        "total": count_analyses({}, db_path=current.db_path),
        "unused": count_analyses({"status": "unused"}, db_path=current.db_path),
        "by_code": query_analyses({"group_by": "code"}, db_path=current.db_path),
    })


@app.post("/settings")
async def save_settings(
    request: Request,
    header_name: str = Form(""),
    ignored_mails: str = Form(""),
    fallback_search: str = Form(""),
    recent_window_minutes: str = Form(""),
    protocol: str = Form("imaps"),
    server: str = Form(""),
    port: str = Form(""),
    user: str = Form(""),
    folder: str = Form("INBOX"),
):
    if not _logged_in(request):
        return RedirectResponse(url="/login", status_code=302)

    protocol = protocol.strip().lower()
    if protocol not in PROTOCOL_PORTS:
        return JSONResponse({"error": f"Unknown protocol: {protocol}"}, status_code=400)

    port = port.strip() or str(default_port(protocol))
    if not port.isdigit():
        return JSONResponse({"error": "Port must be a number"}, status_code=400)

    window = recent_window_minutes.strip()
    if window and not window.isdigit():
        return JSONResponse({"error": "Recency window must be a number of minutes"}, status_code=400)

    values = {
        "BOUNCE_HEADER_NAME": header_name.strip(),
        "BOUNCE_IGNORED_MAILS": ",".join(e.strip() for e in ignored_mails.split(",") if e.strip()),
        "BOUNCE_FALLBACK_SEARCH": "true" if fallback_search else "false",
        "BOUNCE_RECENT_WINDOW_MINUTES": window,
        "BOUNCE_PROTOCOL": protocol,
        "BOUNCE_SERVER": server.strip(),
        "BOUNCE_PORT": port,
        "BOUNCE_USER": user.strip(),
        "BOUNCE_FOLDER": folder.strip() or "INBOX",
    }
    for key, value in values.items():
        save_setting(ENV_PATH, key, value)

    return RedirectResponse(url="/", status_code=302)


@app.get("/api/analyses", response_class=JSONResponse)
async def api_analyses(request: Request):
    if not _logged_in(request):
        return RedirectResponse(url="/login")

    params = dict(request.query_params)
    rows = query_analyses(params, db_path=_current_settings().db_path)
    return {"data": rows, "recordsTotal": len(rows), "recordsFiltered": len(rows)}


@app.get("/api/default_port", response_class=JSONResponse)
async def api_default_port(protocol: str = ""):
    port = default_port(protocol)
    return {"protocol": protocol, "port": "" if port is None else port}


# ============================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("bounce_connector.webui:app", host="0.0.0.0", port=settings.webui_port, reload=False)
