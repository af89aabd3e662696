#!/usr/bin/env python3
"""
A single-app admin for a headless blog CMS.
"""

import math
import os
import re
import secrets
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from urllib.parse import urlparse

import click
import markdown
from flask import (
    Flask,
    abort,
    flash,
    g,
    jsonify,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from flask.cli import AppGroup
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix

from .api import ApiClient, ApiError
from .lifecycle import TABS, Delete, Merge, Rename, TagModal
from .tags import (
    POST_MAX_TAGS,
    SLUG_RE,
    SUGGEST_MIN_CHARS,
    TAG_MAX_LEN,
    TAG_MIN_LEN,
    clean_tags,
    cloud_size,
    has_tag,
    slugify,
    split_tag_field,
)

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
SECRET_FILE.write_text(SECRET_KEY)

API_URL = os.environ.get("QUIRE_API_URL", "http://localhost:8787")
API_TIMEOUT = float(os.environ.get("QUIRE_API_TIMEOUT", "10"))
PAGE_DEFAULT = int(os.environ.get("QUIRE_PAGE_SIZE", "25"))
SITE_NAME = os.environ.get("QUIRE_SITE_NAME", "Quire")
SUGGEST_LIMIT = 10
WORDS_PER_MINUTE = 200

VERSION_RE = re.compile(r"^[\d,]+\.[\d,]+\.[\d,]+$")
HTML_TAG_RE = re.compile(r"<[^>]*>")
POST_SORTS = {
    "title": lambda p: (p.get("title") or "").lower(),
    "date": lambda p: p.get("date") or "",
    "author": lambda p: ((p.get("author") or {}).get("name") or "").lower(),
    "category": lambda p: ((p.get("category") or {}).get("name") or "").lower(),
}
PREF_DEFAULTS = {"theme": "dark", "sidebar": "open"}

try:
    __version__ = version("quire")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    SECRET_KEY=SECRET_KEY,
    API_URL=API_URL,
    API_TIMEOUT=API_TIMEOUT,
    API_SESSION=None,  # tests swap in a fake requests.Session
    PAGE_SIZE=PAGE_DEFAULT,
    SITE_NAME=SITE_NAME,
)
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.superfences",
    "pymdownx.betterem",
]


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(markdown.markdown(text or "", extensions=MD_EXTENSIONS))


@app.template_filter("day")
def day_filter(iso: str | None) -> str:
    """'2025-06-30T12:00:00Z' → 'Jun 30, 2025'"""
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    except ValueError:
        return iso
    return dt.strftime("%b %d, %Y").replace(" 0", " ")


@app.template_filter("plural")
def plural_filter(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


################################################################################
# API + preferences
################################################################################
def get_api() -> ApiClient:
    if "api" not in g:
        g.api = ApiClient(
            app.config["API_URL"],
            timeout=app.config["API_TIMEOUT"],
            session=app.config["API_SESSION"],
        )
    return g.api


def get_pref(key: str, default=None):
    """UI preferences (theme, sidebar) live in the session, nowhere else."""
    prefs = session.get("prefs") or {}
    return prefs.get(key, PREF_DEFAULTS.get(key, default))


def set_pref(key: str, value: str) -> None:
    prefs = dict(session.get("prefs") or {})
    prefs[key] = value
    session["prefs"] = prefs


def page_size() -> int:
    raw = app.config.get("PAGE_SIZE", PAGE_DEFAULT)
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return PAGE_DEFAULT


def page_arg() -> int:
    raw = request.args.get("page", "1")
    return max(int(raw), 1) if raw.isdigit() else 1


def _safe_next(target: str | None, fallback: str) -> str:
    """Only ever redirect to a local path."""
    if not target:
        return fallback
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc or not target.startswith("/"):
        return fallback
    return target


def _csrf_token() -> str:
    """One token per session."""
    return session.get("csrf", "")


def _ids_from_form() -> list[int]:
    return [int(v) for v in request.form.getlist("ids") if v.isdigit()]


app.jinja_env.globals.update(
    csrf_token=_csrf_token,
    get_pref=get_pref,
    version=__version__,
    site_name=lambda: app.config["SITE_NAME"],
    TAG_MIN_LEN=TAG_MIN_LEN,
    TAG_MAX_LEN=TAG_MAX_LEN,
    SUGGEST_MIN_CHARS=SUGGEST_MIN_CHARS,
)


################################################################################
# Request hooks
################################################################################
SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    if "csrf" not in session:
        session["csrf"] = secrets.token_hex(16)

    if request.method in SAFE_METHODS:
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


################################################################################
# Templates
################################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en" class="{{ get_pref('theme') }}">
<title>{{ title ~ ' · ' if title }}{{ site_name() }} admin</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<style>
:root{--bg:#1e1f24;--panel:#26282e;--line:#3a3c44;--fg:#d6d6d6;--muted:#8d8f99;--accent:#f5b942;--danger:#d9534f;--ok:#4caf7a}
html.light{--bg:#f7f7f8;--panel:#fff;--line:#e2e3e7;--fg:#1f2127;--muted:#6b6e78;--accent:#c98a05}
html{font-size:62.5%;font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{margin:0;font-size:1.5rem;line-height:1.5;background:var(--bg);color:var(--fg)}
a{color:var(--accent);text-decoration:none}a:hover{text-decoration:underline}
.shell{display:grid;grid-template-columns:20rem 1fr;min-height:100vh}
.shell.collapsed{grid-template-columns:5rem 1fr}
.shell.collapsed .side .label{display:none}
.side{background:var(--panel);border-right:1px solid var(--line);padding:1.5rem 1rem}
.side a{display:block;padding:.6rem .8rem;border-radius:.4rem;color:var(--fg)}
.side a[aria-current=page]{background:var(--line);color:var(--accent)}
.top{display:flex;justify-content:space-between;align-items:center;padding:1rem 2rem;border-bottom:1px solid var(--line)}
.top form{display:inline;margin:0}
main{padding:2rem;max-width:110rem}
h1{font-size:2.6rem;margin:0 0 .3rem}
.sub{color:var(--muted);margin:0 0 2rem}
.card{background:var(--panel);border:1px solid var(--line);border-radius:.8rem;padding:1.5rem;margin-bottom:1.5rem}
.grid{display:grid;grid-template-columns:repeat(auto-fit,minmax(20rem,1fr));gap:1.5rem}
.big{font-size:2.8rem;font-weight:700}
table{width:100%;border-collapse:collapse}
th,td{padding:.8rem;border-bottom:1px solid var(--line);text-align:left;vertical-align:top}
th a{color:var(--muted)}
.pill{display:inline-block;padding:.1rem .7rem;margin:.1rem .2rem .1rem 0;border-radius:1rem;background:var(--line);font-size:.85em}
.pill.draft{background:#6b5a2a}.pill.published{background:#2f5e45}
input,select,textarea{font:inherit;color:var(--fg);background:var(--bg);border:1px solid var(--line);border-radius:.4rem;padding:.6rem .8rem;box-sizing:border-box;width:100%}
textarea{min-height:8rem}
label{display:block;font-weight:600;margin:1rem 0 .4rem}
.row{display:flex;gap:1rem;align-items:center;flex-wrap:wrap}
.row>*{flex:1}
button,.button{font:inherit;display:inline-block;padding:.6rem 1.2rem;border-radius:.4rem;border:1px solid var(--accent);background:var(--accent);color:#111;cursor:pointer}
button.ghost,.button.ghost{background:transparent;color:var(--fg);border-color:var(--line)}
button.danger{background:var(--danger);border-color:var(--danger);color:#fff}
button[disabled]{opacity:.5;cursor:default}
.err{color:var(--danger);font-size:.9em;margin:.3rem 0 0}
.alert{border:1px solid var(--danger);color:var(--danger);border-radius:.4rem;padding:.8rem 1rem;margin:1rem 0}
.hint{color:var(--muted);font-size:.9em;margin:.3rem 0 0}
.toast{position:fixed;top:1rem;right:1rem;background:#323232;color:#fff;padding:.75rem 1rem;border-radius:.4rem;box-shadow:0 2px 6px rgba(0,0,0,.4);max-width:32rem;z-index:999}
.toast.error{background:var(--danger)}
.tag-box{display:flex;flex-wrap:wrap;gap:.4rem;border:1px solid var(--line);border-radius:.4rem;padding:.4rem;position:relative}
.tag-box input{border:0;flex:1;min-width:12rem;padding:.3rem}
.tag-chip{display:inline-flex;align-items:center;gap:.3rem;background:var(--line);border-radius:1rem;padding:.1rem .6rem}
.tag-chip button{background:none;border:0;color:var(--muted);padding:0 .2rem}
.tag-suggest{position:absolute;left:0;right:0;top:100%;background:var(--panel);border:1px solid var(--line);border-radius:.4rem;list-style:none;margin:.2rem 0 0;padding:.2rem 0;z-index:50;max-height:18rem;overflow:auto}
.tag-suggest li{padding:.5rem .8rem;cursor:pointer}
.tag-suggest li.active,.tag-suggest li:hover{background:var(--line);color:var(--accent)}
.overlay{position:fixed;inset:0;background:rgba(0,0,0,.55);display:flex;align-items:flex-start;justify-content:center;padding-top:8vh;z-index:100}
.dialog{background:var(--panel);border:1px solid var(--line);border-radius:.8rem;width:min(60rem,94vw);padding:2rem}
.tabs{display:grid;grid-template-columns:repeat(3,1fr);gap:.4rem;margin:1.5rem 0}
.tabs a{text-align:center;padding:.6rem;border-radius:.4rem;background:var(--bg);color:var(--fg)}
.tabs a[aria-current=page]{background:var(--line);color:var(--accent)}
.pager{margin-top:1.5rem;display:flex;gap:.6rem}
.pager span{border-bottom:.3rem solid var(--muted)}
.bar{height:.8rem;border-radius:.4rem;background:linear-gradient(90deg,#f5b942,#c026d3)}
</style>
<body>
<div class="shell{% if get_pref('sidebar') == 'collapsed' %} collapsed{% endif %}">
<nav class="side" aria-label="Primary">
    <p style="font-weight:700;font-size:1.8rem;margin:0 0 1.5rem .8rem;">
        <a href="{{ url_for('dashboard') }}" style="color:var(--accent);">{{ site_name()[:1] }}<span class="label">{{ site_name()[1:] }}</span></a>
    </p>
    {% for endpoint, label in [('dashboard','Dashboard'),('posts','Blog posts'),('authors','Authors'),('categories','Categories'),('tags_index','Tags'),('changelog','Changelog')] %}
        {% set here = url_for(endpoint) %}
        <a href="{{ here }}"
           {% if request.path == here or (endpoint != 'dashboard' and request.path.startswith(here ~ '/')) %}aria-current="page"{% endif %}>
           <span class="label">{{ label }}</span>{% if get_pref('sidebar') == 'collapsed' %}{{ label[:1] }}{% endif %}</a>
    {% endfor %}
</nav>
<div>
<header class="top">
    <form method="post" action="{{ url_for('prefs') }}">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <input type="hidden" name="next" value="{{ request.full_path }}">
        <button class="ghost" name="sidebar" value="{{ 'open' if get_pref('sidebar') == 'collapsed' else 'collapsed' }}"
                aria-label="Toggle sidebar">☰</button>
    </form>
    <form method="post" action="{{ url_for('prefs') }}">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <input type="hidden" name="next" value="{{ request.full_path }}">
        <button class="ghost" name="theme" value="{{ 'light' if get_pref('theme') == 'dark' else 'dark' }}">
            {{ 'Light' if get_pref('theme') == 'dark' else 'Dark' }} mode</button>
    </form>
</header>
{% with msgs = get_flashed_messages(with_categories=true) %}
{% if msgs %}
    <div role="status" aria-live="polite" class="toast{% if msgs[-1][0] == 'error' %} error{% endif %}">
    {% for cat, m in msgs %}{{ m }}{% if not loop.last %}<br>{% endif %}{% endfor %}
    </div>
{% endif %}
{% endwith %}
<main id="main-content">
"""

TEMPL_EPILOG = """
</main>
<footer style="padding:1rem 2rem;color:var(--muted);font-size:.85em;border-top:1px solid var(--line);">
    {{ site_name() }} admin <span>v{{ version }}</span>
</footer>
</div>
</div>
<script>
(() => {
    // one submission in flight per form; destructive forms may ask first
    document.querySelectorAll('form[data-busy]').forEach(form => {
        form.addEventListener('submit', ev => {
            const msg = form.dataset.confirm;
            if (msg && !window.confirm(msg)) { ev.preventDefault(); return; }
            form.querySelectorAll('button[type=submit],button:not([type])').forEach(b => {
                b.disabled = true;
                b.dataset.label = b.textContent;
                b.textContent = 'Working…';
            });
        });
    });
    const toast = document.querySelector('.toast');
    if (toast) setTimeout(() => toast.remove(), 4000);
})();
</script>
</body>
</html>
"""

# Tag input widget.  Mirrors quire.tags.TagInput: same rules, same keys,
# debounced suggestions guarded by a request sequence number.
TAG_INPUT_MACRO = """
{% macro tag_input(name, tags, max_tags=0, placeholder='Add a tag...') -%}
<div class="tag-input" data-name="{{ name }}" data-max="{{ max_tags }}"
     data-suggest="{{ url_for('tag_suggestions') }}">
    <div class="tag-box">
        {% for t in tags %}
        <span class="tag-chip" data-tag="{{ t }}">{{ t }}<button type="button" aria-label="Remove {{ t }}">×</button></span>
        {% endfor %}
        <input type="text" name="{{ name }}_entry" autocomplete="off"
               data-placeholder="{{ placeholder }}"
               placeholder="{{ placeholder if not tags else '' }}">
        <ul class="tag-suggest" hidden></ul>
    </div>
    <input type="hidden" name="{{ name }}" value="{{ tags|join(',') }}">
    <p class="err tag-error" hidden></p>
    <p class="hint">Press Enter, Tab, or comma to add a tag</p>
</div>
{%- endmacro %}
"""

TAG_INPUT_SCRIPT = """
<script>
(() => {
    const MIN = {{ TAG_MIN_LEN }}, MAX = {{ TAG_MAX_LEN }}, SUGGEST_MIN = {{ SUGGEST_MIN_CHARS }};
    const PATTERN = /^[A-Za-z0-9 \\-]+$/;

    document.querySelectorAll('.tag-input').forEach(root => {
        const box = root.querySelector('.tag-box');
        const entry = box.querySelector('input');
        const hidden = root.querySelector('input[type=hidden]');
        const list = root.querySelector('.tag-suggest');
        const errEl = root.querySelector('.tag-error');
        const maxTags = parseInt(root.dataset.max || '0', 10) || Infinity;
        let tags = hidden.value ? hidden.value.split(',') : [];
        let suggestions = [], selected = -1, seq = 0, timer = null;

        const has = t => tags.some(x => x.toLowerCase() === t.toLowerCase());
        const setError = msg => { errEl.textContent = msg || ''; errEl.hidden = !msg; };
        const check = t => {
            if (t.length < MIN) return `Tag must be at least ${MIN} characters`;
            if (t.length > MAX) return `Tag must be at most ${MAX} characters`;
            if (!PATTERN.test(t)) return 'Tag can only contain letters, numbers, spaces, and hyphens';
            if (t.includes('  ') || t.includes('--')) return 'Tag cannot contain consecutive spaces or hyphens';
            if (has(t)) return 'Tag already exists';
            if (tags.length >= maxTags) return `Maximum ${maxTags} tags allowed`;
            return null;
        };
        const render = () => {
            box.querySelectorAll('.tag-chip').forEach(c => c.remove());
            tags.forEach(t => {
                const chip = document.createElement('span');
                chip.className = 'tag-chip';
                chip.textContent = t;
                const x = document.createElement('button');
                x.type = 'button'; x.textContent = '×';
                x.setAttribute('aria-label', `Remove ${t}`);
                x.addEventListener('click', () => remove(t));
                chip.appendChild(x);
                box.insertBefore(chip, entry);
            });
            hidden.value = tags.join(',');
            entry.placeholder = tags.length ? '' : entry.dataset.placeholder;
            hidden.dispatchEvent(new Event('change', {bubbles: true}));
        };
        const close = () => { list.hidden = true; selected = -1; paint(); };
        const paint = () => {
            list.innerHTML = '';
            suggestions.forEach((s, i) => {
                const li = document.createElement('li');
                li.textContent = s;
                if (i === selected) li.className = 'active';
                li.addEventListener('mousedown', ev => { ev.preventDefault(); add(s); });
                list.appendChild(li);
            });
        };
        const add = raw => {
            const t = raw.trim();
            if (!t) return false;
            const problem = check(t);
            if (problem) { setError(problem); return false; }
            tags = [...tags, t];
            entry.value = '';
            setError(null);
            seq++;
            close();
            render();
            return true;
        };
        const remove = t => { tags = tags.filter(x => x !== t); render(); };
        const suggest = () => {
            const mine = ++seq;
            clearTimeout(timer);
            const q = entry.value;
            if (q.length < SUGGEST_MIN) { suggestions = []; close(); return; }
            timer = setTimeout(async () => {
                let data = [];
                try {
                    const res = await fetch(`${root.dataset.suggest}?q=${encodeURIComponent(q)}`);
                    data = (await res.json()).data || [];
                } catch (err) {
                    console.error('Error fetching suggestions:', err);
                }
                if (mine !== seq) return;  // a newer keystroke owns the list
                suggestions = data.filter(s => !has(s));
                selected = -1;
                paint();
                list.hidden = suggestions.length === 0;
            }, 300);
        };

        box.querySelectorAll('.tag-chip button').forEach(b =>
            b.addEventListener('click', () => remove(b.parentElement.dataset.tag)));

        entry.addEventListener('input', () => {
            const v = entry.value;
            if (v.includes(',')) {
                const i = v.indexOf(',');
                const head = v.slice(0, i).trim();
                if (head && !add(head)) {
                    seq++;
                    clearTimeout(timer);
                    suggestions = [];
                    close();
                    return;
                }
                entry.value = v.slice(i + 1).trimStart();
            } else {
                setError(null);
            }
            suggest();
        });
        entry.addEventListener('keydown', ev => {
            if (ev.key === 'Enter' || ev.key === 'Tab' || ev.key === ',') {
                if (!entry.value && selected < 0 && ev.key === 'Tab') return;
                ev.preventDefault();
                add(selected >= 0 && suggestions[selected] ? suggestions[selected] : entry.value);
            } else if (ev.key === 'Backspace' && !entry.value && tags.length) {
                remove(tags[tags.length - 1]);
            } else if (ev.key === 'ArrowDown') {
                ev.preventDefault();
                if (selected < suggestions.length - 1) selected++;
                paint();
            } else if (ev.key === 'ArrowUp') {
                ev.preventDefault();
                selected = selected > 0 ? selected - 1 : -1;
                paint();
            } else if (ev.key === 'Escape') {
                close();
            }
        });
        entry.addEventListener('blur', () => setTimeout(close, 150));
    });
})();
</script>
"""


################################################################################
# Preferences
################################################################################
@app.route("/admin/prefs", methods=["POST"])
def prefs():
    theme = request.form.get("theme")
    if theme in ("dark", "light"):
        set_pref("theme", theme)
    sidebar = request.form.get("sidebar")
    if sidebar in ("open", "collapsed"):
        set_pref("sidebar", sidebar)
    return redirect(_safe_next(request.form.get("next"), url_for("dashboard")))


################################################################################
# Dashboard
################################################################################
@app.route("/")
def index():
    return redirect(url_for("dashboard"))


@app.route("/admin")
def dashboard():
    api = get_api()
    stats = {"blog": 0, "changelog": 0, "categories": 0, "tags": 0}
    blog_stats = {}
    try:
        blog_stats = api.posts.stats()
        stats.update(
            blog=blog_stats.get("totalPosts", 0),
            categories=blog_stats.get("totalCategories", 0),
            tags=blog_stats.get("totalTags", 0),
        )
    except ApiError:
        app.logger.exception("Failed to fetch stats")
    try:
        stats["changelog"] = api.changelog.stats().get("total", 0)
    except ApiError:
        app.logger.exception("Failed to fetch changelog stats")

    return render_template_string(
        TEMPL_DASHBOARD,
        title="Dashboard",
        stats=stats,
        recent=blog_stats.get("recentPosts", []),
        popular=blog_stats.get("popularTags", []),
    )


TEMPL_DASHBOARD = wrap("""
<h1>Dashboard</h1>
<p class="sub">Manage your content from here.</p>
<div class="grid">
    {% for key, label in [('blog','Total blog posts'),('changelog','Changelog entries'),('categories','Categories'),('tags','Tags')] %}
    <div class="card"><div class="hint">{{ label }}</div><div class="big">{{ stats[key] }}</div></div>
    {% endfor %}
</div>
<div class="grid">
    <div class="card">
        <h3 style="margin-top:0">Recent blog posts</h3>
        {% for p in recent %}
            <p style="margin:.4rem 0"><a href="{{ url_for('post_edit', post_id=p.id) }}">{{ p.title }}</a>
               <span class="hint">{{ p.date|day }}</span></p>
        {% else %}
            <p class="hint">No posts yet.</p>
        {% endfor %}
        <a class="button ghost" href="{{ url_for('post_new') }}">New post</a>
    </div>
    <div class="card">
        <h3 style="margin-top:0">Popular tags</h3>
        {% for t in popular %}
            <a class="pill" href="{{ url_for('posts', tag=t.tag) }}">#{{ t.tag }} <sup>{{ t.count }}</sup></a>
        {% else %}
            <p class="hint">No tags yet.</p>
        {% endfor %}
    </div>
</div>
""")


################################################################################
# Blog posts
################################################################################
def read_time(content: str | None) -> str:
    """Word count of the plain text at 200 wpm, at least one minute."""
    plain = HTML_TAG_RE.sub("", content or "").strip()
    words = len(plain.split())
    return f"{max(1, math.ceil(words / WORDS_PER_MINUTE))} min read"


def _post_refs(post: dict, key: str):
    """authorId / categoryId, whether flat or nested in the API payload."""
    flat = post.get(f"{key}Id")
    if flat:
        return flat
    return (post.get(key) or {}).get("id")


def validate_post(form, *, auto_slug: bool) -> tuple[dict, dict[str, str]]:
    """Form → (payload, errors).  Tags go through the tag input rules."""
    errors: dict[str, str] = {}
    title = form.get("title", "").strip()
    slug = form.get("slug", "").strip()
    if not slug and auto_slug:
        slug = slugify(title)
    summary = form.get("summary", "").strip()
    content = form.get("content", "")
    date = form.get("date", "").strip()

    if not slug:
        errors["slug"] = "Slug is required"
    elif not SLUG_RE.match(slug) or len(slug) > 200:
        errors["slug"] = "Slug must be lowercase with hyphens only"
    if not title:
        errors["title"] = "Title is required"
    elif len(title) > 200:
        errors["title"] = "Title must be at most 200 characters"
    if not summary:
        errors["summary"] = "Summary is required"
    elif len(summary) > 500:
        errors["summary"] = "Summary must be at most 500 characters"
    if not HTML_TAG_RE.sub("", content).strip():
        errors["content"] = "Content is required"

    refs = {}
    for key, label in (("author", "Author"), ("category", "Category")):
        raw = form.get(f"{key}Id", "").strip()
        if raw.isdigit() and int(raw) > 0:
            refs[f"{key}Id"] = int(raw)
        else:
            errors[f"{key}Id"] = f"{label} is required"
    if not date:
        errors["date"] = "Date is required"

    raw_tags = split_tag_field(form.get("tags")) + split_tag_field(form.get("tags_entry"))
    tags, tag_errors = clean_tags(raw_tags, max_tags=POST_MAX_TAGS)
    if tag_errors:
        errors["tags"] = "; ".join(tag_errors)

    payload = {
        "title": title,
        "slug": slug,
        "date": date,
        "summary": summary,
        "content": content,
        "readTime": read_time(content),
        "tags": tags,
        **refs,
    }
    return payload, errors


def _form_choices(api: ApiClient) -> tuple[list[dict], list[dict], str | None]:
    try:
        return api.authors.list(), api.categories.list(), None
    except ApiError as exc:
        app.logger.warning("Could not load authors/categories: %s", exc)
        return [], [], str(exc)


def _render_post_form(post: dict, *, errors=None, post_id=None, preview=False, alert=None):
    authors, categories, load_error = _form_choices(get_api())
    return render_template_string(
        TEMPL_POST_FORM,
        title="Edit post" if post_id else "New post",
        post=post,
        post_id=post_id,
        errors=errors or {},
        authors=authors,
        categories=categories,
        alert=alert or load_error,
        preview=preview,
        max_tags=POST_MAX_TAGS,
    )


@app.route("/admin/blog")
def posts():
    api = get_api()
    tag = request.args.get("tag", "").strip()
    q = request.args.get("q", "").strip()
    sort = request.args.get("sort", "date")
    direction = "asc" if request.args.get("dir") == "asc" else "desc"
    page = page_arg()

    rows, pagination, error = [], {}, None
    try:
        resp = api.posts.page(
            page=page, limit=page_size(), search=q or None, tags=[tag] if tag else None
        )
        rows = resp.get("data", [])
        pagination = resp.get("pagination") or {}
    except ApiError as exc:
        error = str(exc)
        flash("Failed to load blog posts", "error")

    if sort in POST_SORTS:
        rows = sorted(rows, key=POST_SORTS[sort], reverse=direction == "desc")

    return render_template_string(
        TEMPL_POSTS,
        title="Blog posts",
        rows=rows,
        tag=tag,
        q=q,
        sort=sort,
        direction=direction,
        page=page,
        pages=list(range(1, int(pagination.get("totalPages") or 1) + 1)),
        error=error,
    )


@app.route("/admin/blog/new", methods=["GET", "POST"])
def post_new():
    if request.method == "POST":
        payload, errors = validate_post(request.form, auto_slug=True)
        if request.form.get("action") == "preview":
            return _render_post_form(payload, errors={}, preview=True)
        if not errors:
            try:
                get_api().posts.create(payload)
            except ApiError as exc:
                return _render_post_form(payload, errors=errors, alert=str(exc)), 400
            flash("Blog post created successfully")
            return redirect(url_for("posts"))
        return _render_post_form(payload, errors=errors), 400

    blank = {"date": utc_now().date().isoformat(), "tags": [], "readTime": read_time("")}
    return _render_post_form(blank)


@app.route("/admin/blog/<int:post_id>/edit", methods=["GET", "POST"])
def post_edit(post_id):
    api = get_api()
    if request.method == "POST":
        payload, errors = validate_post(request.form, auto_slug=False)
        if request.form.get("action") == "preview":
            return _render_post_form(payload, post_id=post_id, preview=True)
        if not errors:
            try:
                api.posts.update(post_id, payload)
            except ApiError as exc:
                return (
                    _render_post_form(payload, errors=errors, post_id=post_id, alert=str(exc)),
                    400,
                )
            flash("Blog post updated successfully")
            return redirect(url_for("posts"))
        return _render_post_form(payload, errors=errors, post_id=post_id), 400

    try:
        post = api.posts.get(post_id)
    except ApiError as exc:
        if exc.not_found:
            abort(404)
        raise
    post = {
        **post,
        "authorId": _post_refs(post, "author"),
        "categoryId": _post_refs(post, "category"),
        "date": (post.get("date") or "")[:10],
        "tags": post.get("tags") or [],
    }
    return _render_post_form(post, post_id=post_id)


@app.route("/admin/blog/<int:post_id>/delete", methods=["GET", "POST"])
def post_delete(post_id):
    api = get_api()
    try:
        post = api.posts.get(post_id)
    except ApiError as exc:
        if exc.not_found:
            abort(404)
        raise

    if request.method == "POST":
        try:
            api.posts.delete(post_id)
        except ApiError as exc:
            flash(str(exc) or "Failed to delete post", "error")
            return redirect(url_for("posts"))
        flash("Blog post deleted successfully")
        return redirect(url_for("posts"))

    return render_template_string(
        TEMPL_CONFIRM,
        title="Delete post?",
        heading="Delete blog post?",
        items=[post.get("title") or post.get("slug")],
        back=url_for("posts"),
    )


def _post_labels(ids: list[int]) -> list[str]:
    """Titles for the confirmation page; unknown ids show as #id."""
    labels = []
    for i in ids:
        try:
            labels.append(get_api().posts.get(i).get("title") or f"#{i}")
        except ApiError:
            labels.append(f"#{i}")
    return labels


@app.route("/admin/blog/bulk-delete", methods=["POST"])
def posts_bulk_delete():
    ids = _ids_from_form()
    if not ids:
        flash("Select at least one post", "error")
        return redirect(url_for("posts"))

    if request.form.get("confirm") != "yes":
        return render_template_string(
            TEMPL_CONFIRM,
            title="Delete posts?",
            heading=f"Delete {len(ids)} blog post{'s' if len(ids) != 1 else ''}?",
            items=_post_labels(ids),
            ids=ids,
            back=url_for("posts"),
        )

    try:
        result = get_api().posts.bulk_delete(ids)
    except ApiError as exc:
        flash(str(exc), "error")
        return redirect(url_for("posts"))
    n = result.get("deletedCount", len(ids))
    flash(f"Deleted {n} post{'s' if n != 1 else ''}")
    return redirect(url_for("posts"))


TEMPL_CONFIRM = wrap("""
<h1>{{ heading }}</h1>
<p class="sub">This action cannot be undone.</p>
<div class="card" style="border-left:3px solid var(--danger);">
    <ul style="margin:0;">
    {% for label in items %}<li>{{ label }}</li>{% endfor %}
    </ul>
</div>
<form method="post" data-busy>
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    {% for i in ids or [] %}<input type="hidden" name="ids" value="{{ i }}">{% endfor %}
    <input type="hidden" name="confirm" value="yes">
    <button class="danger" type="submit">Yes – delete</button>
    <a href="{{ back }}" style="margin-left:1rem;">Cancel</a>
</form>
""")

TEMPL_POSTS = wrap("""
<div class="row" style="align-items:flex-start;">
    <div>
        <h1>Blog posts</h1>
        <p class="sub">{% if tag %}Tagged <span class="pill">#{{ tag }}</span>
            <a href="{{ url_for('posts') }}">clear</a>{% else %}All posts{% endif %}</p>
    </div>
    <div style="flex:0;"><a class="button" href="{{ url_for('post_new') }}">New post</a></div>
</div>
{% if error %}<div class="alert">{{ error }}</div>{% endif %}
<form method="get" style="margin-bottom:1rem;">
    {% if tag %}<input type="hidden" name="tag" value="{{ tag }}">{% endif %}
    <input type="search" name="q" value="{{ q }}" placeholder="Search posts" aria-label="Search posts">
</form>
{% macro sort_link(key, label) -%}
    <a href="{{ url_for('posts', tag=tag or None, q=q or None, sort=key,
                        dir='desc' if sort == key and direction == 'asc' else 'asc') }}">
        {{ label }}{% if sort == key %} {{ '↑' if direction == 'asc' else '↓' }}{% endif %}</a>
{%- endmacro %}
{% if pages|length > 1 %}<p class="hint sort-scope">Sorting applies to the posts on this page ({{ page }} of {{ pages|length }}).</p>{% endif %}
<form method="post" action="{{ url_for('posts_bulk_delete') }}">
<input type="hidden" name="csrf" value="{{ csrf_token() }}">
<div class="card" style="padding:0;">
<table>
    <thead><tr>
        <th style="width:2rem;"></th>
        <th>{{ sort_link('title', 'Title') }}</th>
        <th>{{ sort_link('author', 'Author') }}</th>
        <th>{{ sort_link('category', 'Category') }}</th>
        <th>{{ sort_link('date', 'Date') }}</th>
        <th>Tags</th>
        <th></th>
    </tr></thead>
    <tbody>
    {% for p in rows %}
    <tr>
        <td><input type="checkbox" name="ids" value="{{ p.id }}" aria-label="Select {{ p.title }}" style="width:auto;"></td>
        <td><strong>{{ p.title }}</strong><br><span class="hint">/{{ p.slug }}</span></td>
        <td>{{ (p.author or {}).name or 'Unknown' }}</td>
        <td>{{ (p.category or {}).name or 'Uncategorized' }}</td>
        <td class="hint">{{ p.date|day }}</td>
        <td>
            {% for t in (p.tags or [])[:3] %}<a class="pill" href="{{ url_for('posts', tag=t) }}">{{ t }}</a>{% endfor %}
            {% if (p.tags or [])|length > 3 %}<span class="pill">+{{ p.tags|length - 3 }}</span>{% endif %}
        </td>
        <td style="white-space:nowrap;">
            <a href="{{ url_for('post_edit', post_id=p.id) }}">Edit</a>&nbsp;
            <a href="{{ url_for('post_delete', post_id=p.id) }}">Delete</a>
        </td>
    </tr>
    {% else %}
    <tr><td colspan="7" class="hint">No blog posts found.</td></tr>
    {% endfor %}
    </tbody>
</table>
</div>
{% if rows %}<button class="danger" type="submit">Delete selected</button>{% endif %}
</form>
{% if pages|length > 1 %}
<nav class="pager">
    {% for p in pages %}
        {% if p == page %}<span>{{ p }}</span>
        {% else %}<a href="{{ url_for('posts', tag=tag or None, q=q or None, sort=sort, dir=direction, page=p) }}">{{ p }}</a>{% endif %}
    {% endfor %}
</nav>
{% endif %}
""")

TEMPL_POST_FORM = wrap(TAG_INPUT_MACRO + """
<h1>{{ title }}</h1>
<p class="sub"><a href="{{ url_for('posts') }}">← Back to posts</a></p>
{% if alert %}<div class="alert">{{ alert }}</div>{% endif %}
<form method="post" data-busy>
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <label for="title">Title</label>
    <input id="title" name="title" value="{{ post.title or '' }}" maxlength="200">
    {% if errors.title %}<p class="err">{{ errors.title }}</p>{% endif %}

    <label for="slug">Slug</label>
    <input id="slug" name="slug" value="{{ post.slug or '' }}" placeholder="post-url-slug">
    {% if not post_id %}<p class="hint">Leave empty to derive it from the title.</p>{% endif %}
    {% if errors.slug %}<p class="err">{{ errors.slug }}</p>{% endif %}

    <div class="row">
        <div>
            <label for="authorId">Author</label>
            <select id="authorId" name="authorId">
                <option value="">Select an author</option>
                {% for a in authors %}
                <option value="{{ a.id }}" {% if a.id == post.authorId %}selected{% endif %}>{{ a.name }}</option>
                {% endfor %}
            </select>
            {% if errors.authorId %}<p class="err">{{ errors.authorId }}</p>{% endif %}
        </div>
        <div>
            <label for="categoryId">Category</label>
            <select id="categoryId" name="categoryId">
                <option value="">Select a category</option>
                {% for c in categories %}
                <option value="{{ c.id }}" {% if c.id == post.categoryId %}selected{% endif %}>{{ c.name }}</option>
                {% endfor %}
            </select>
            {% if errors.categoryId %}<p class="err">{{ errors.categoryId }}</p>{% endif %}
        </div>
        <div>
            <label for="date">Date</label>
            <input id="date" name="date" type="date" value="{{ post.date or '' }}">
            {% if errors.date %}<p class="err">{{ errors.date }}</p>{% endif %}
        </div>
    </div>

    <label for="summary">Summary</label>
    <textarea id="summary" name="summary" maxlength="500">{{ post.summary or '' }}</textarea>
    {% if errors.summary %}<p class="err">{{ errors.summary }}</p>{% endif %}

    <label for="content">Content <span class="hint">(Markdown · {{ post.readTime }})</span></label>
    <textarea id="content" name="content" style="min-height:24rem;">{{ post.content or '' }}</textarea>
    {% if errors.content %}<p class="err">{{ errors.content }}</p>{% endif %}

    <label>Tags</label>
    {{ tag_input('tags', post.tags or [], max_tags=max_tags) }}
    {% if errors.tags %}<p class="err">{{ errors.tags }}</p>{% endif %}

    <p class="row" style="margin-top:2rem;">
        <span style="flex:0;"><button type="submit" name="action" value="save">{{ 'Update post' if post_id else 'Create post' }}</button></span>
        <span style="flex:0;"><button class="ghost" type="submit" name="action" value="preview">Preview</button></span>
        <span><a href="{{ url_for('posts') }}">Cancel</a></span>
    </p>
</form>
{% if preview %}
<div class="card">
    <h2 style="margin-top:0">{{ post.title }}</h2>
    <p class="hint">{{ post.summary }}</p>
    <div class="e-content">{{ post.content|md }}</div>
</div>
{% endif %}
""" + TAG_INPUT_SCRIPT)


################################################################################
# Authors + categories
################################################################################
def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _validate_slugged(form, *, name_max: int, slug_max: int, auto_slug: bool):
    errors: dict[str, str] = {}
    name = form.get("name", "").strip()
    slug = form.get("slug", "").strip()
    if not slug and auto_slug:
        slug = slugify(name)
    if not name:
        errors["name"] = "Name is required"
    elif len(name) > name_max:
        errors["name"] = f"Name must be at most {name_max} characters"
    if not slug:
        errors["slug"] = "Slug is required"
    elif len(slug) > slug_max or not SLUG_RE.match(slug):
        errors["slug"] = "Slug must be lowercase letters, numbers, and hyphens only"
    return {"name": name, "slug": slug}, errors


def validate_author(form, *, auto_slug: bool = True) -> tuple[dict, dict[str, str]]:
    data, errors = _validate_slugged(form, name_max=100, slug_max=100, auto_slug=auto_slug)
    bio = form.get("bio", "").strip()
    avatar = form.get("avatar", "").strip()
    if len(bio) > 500:
        errors["bio"] = "Bio must be at most 500 characters"
    if avatar and not _is_http_url(avatar):
        errors["avatar"] = "Invalid URL"
    data.update(bio=bio, avatar=avatar)
    return data, errors


def validate_category(form, *, auto_slug: bool = True) -> tuple[dict, dict[str, str]]:
    data, errors = _validate_slugged(form, name_max=50, slug_max=50, auto_slug=auto_slug)
    description = form.get("description", "").strip()
    if len(description) > 200:
        errors["description"] = "Description must be at most 200 characters"
    data["description"] = description
    return data, errors


# kind → labels, extra fields, validator
SIMPLE_KINDS = {
    "authors": {
        "one": "Author",
        "many": "Authors",
        "fields": [("bio", "Bio", "textarea"), ("avatar", "Avatar URL", "url")],
        "validate": validate_author,
    },
    "categories": {
        "one": "Category",
        "many": "Categories",
        "fields": [("description", "Description", "textarea")],
        "validate": validate_category,
    },
}


def _collection(kind: str):
    return getattr(get_api(), kind)


def _simple_list(kind: str):
    meta = SIMPLE_KINDS[kind]
    rows, error = [], None
    try:
        rows = _collection(kind).list()
    except ApiError as exc:
        error = str(exc)
    return render_template_string(
        TEMPL_SIMPLE_LIST, title=meta["many"], kind=kind, meta=meta, rows=rows, error=error
    )


def _simple_form(kind: str, item_id: int | None = None):
    meta = SIMPLE_KINDS[kind]
    coll = _collection(kind)
    item, errors, alert = {}, {}, None

    if request.method == "POST":
        item, errors = meta["validate"](request.form, auto_slug=item_id is None)
        if not errors:
            try:
                if item_id is None:
                    coll.create(item)
                else:
                    coll.update(item_id, item)
            except ApiError as exc:
                alert = str(exc)
            else:
                verb = "created" if item_id is None else "updated"
                flash(f"{meta['one']} {verb} successfully")
                return redirect(url_for(kind))
    elif item_id is not None:
        try:
            item = coll.find(item_id)
        except ApiError as exc:
            if exc.not_found:
                abort(404)
            raise

    status = 400 if (errors or alert) else 200
    return render_template_string(
        TEMPL_SIMPLE_FORM,
        title=f"{'Edit' if item_id else 'New'} {meta['one'].lower()}",
        kind=kind,
        meta=meta,
        item=item,
        item_id=item_id,
        errors=errors,
        alert=alert,
    ), status


def _simple_delete(kind: str, item_id: int):
    meta = SIMPLE_KINDS[kind]
    coll = _collection(kind)
    try:
        item = coll.find(item_id)
    except ApiError as exc:
        if exc.not_found:
            abort(404)
        raise

    if request.method == "POST":
        try:
            coll.delete(item_id)
        except ApiError as exc:
            flash(str(exc), "error")
        else:
            flash(f"{meta['one']} deleted successfully")
        return redirect(url_for(kind))

    return render_template_string(
        TEMPL_CONFIRM,
        title=f"Delete {meta['one'].lower()}?",
        heading=f"Delete {meta['one'].lower()}?",
        items=[item.get("name")],
        back=url_for(kind),
    )


@app.route("/admin/authors")
def authors():
    return _simple_list("authors")


@app.route("/admin/authors/new", methods=["GET", "POST"])
def author_new():
    return _simple_form("authors")


@app.route("/admin/authors/<int:item_id>/edit", methods=["GET", "POST"])
def author_edit(item_id):
    return _simple_form("authors", item_id)


@app.route("/admin/authors/<int:item_id>/delete", methods=["GET", "POST"])
def author_delete(item_id):
    return _simple_delete("authors", item_id)


@app.route("/admin/categories")
def categories():
    return _simple_list("categories")


@app.route("/admin/categories/new", methods=["GET", "POST"])
def category_new():
    return _simple_form("categories")


@app.route("/admin/categories/<int:item_id>/edit", methods=["GET", "POST"])
def category_edit(item_id):
    return _simple_form("categories", item_id)


@app.route("/admin/categories/<int:item_id>/delete", methods=["GET", "POST"])
def category_delete(item_id):
    return _simple_delete("categories", item_id)


SIMPLE_ENDPOINTS = {
    "authors": ("author_new", "author_edit", "author_delete"),
    "categories": ("category_new", "category_edit", "category_delete"),
}
app.jinja_env.globals["simple_endpoints"] = SIMPLE_ENDPOINTS

TEMPL_SIMPLE_LIST = wrap("""
<div class="row" style="align-items:flex-start;">
    <div><h1>{{ meta.many }}</h1><p class="sub">{{ rows|length }} total</p></div>
    <div style="flex:0;"><a class="button" href="{{ url_for(simple_endpoints[kind][0]) }}">New {{ meta.one|lower }}</a></div>
</div>
{% if error %}<div class="alert">{{ error }}</div>{% endif %}
<div class="card" style="padding:0;">
<table>
    <thead><tr><th>Name</th><th>Slug</th><th></th></tr></thead>
    <tbody>
    {% for r in rows %}
    <tr>
        <td><strong>{{ r.name }}</strong>
            {% if r.bio or r.description %}<br><span class="hint">{{ r.bio or r.description }}</span>{% endif %}</td>
        <td class="hint">{{ r.slug }}</td>
        <td style="white-space:nowrap;">
            <a href="{{ url_for(simple_endpoints[kind][1], item_id=r.id) }}">Edit</a>&nbsp;
            <a href="{{ url_for(simple_endpoints[kind][2], item_id=r.id) }}">Delete</a>
        </td>
    </tr>
    {% else %}
    <tr><td colspan="3" class="hint">Nothing here yet.</td></tr>
    {% endfor %}
    </tbody>
</table>
</div>
""")

TEMPL_SIMPLE_FORM = wrap("""
<h1>{{ title }}</h1>
<p class="sub"><a href="{{ url_for(kind) }}">← Back to {{ meta.many|lower }}</a></p>
{% if alert %}<div class="alert">{{ alert }}</div>{% endif %}
<form method="post" data-busy>
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <label for="name">Name</label>
    <input id="name" name="name" value="{{ item.name or '' }}">
    {% if errors.name %}<p class="err">{{ errors.name }}</p>{% endif %}
    <label for="slug">Slug</label>
    <input id="slug" name="slug" value="{{ item.slug or '' }}">
    {% if not item_id %}<p class="hint">Leave empty to derive it from the name.</p>{% endif %}
    {% if errors.slug %}<p class="err">{{ errors.slug }}</p>{% endif %}
    {% for name, label, kind_ in meta.fields %}
        <label for="{{ name }}">{{ label }}</label>
        {% if kind_ == 'textarea' %}
            <textarea id="{{ name }}" name="{{ name }}">{{ item[name] or '' }}</textarea>
        {% else %}
            <input id="{{ name }}" name="{{ name }}" type="{{ kind_ }}" value="{{ item[name] or '' }}">
        {% endif %}
        {% if errors[name] %}<p class="err">{{ errors[name] }}</p>{% endif %}
    {% endfor %}
    <p style="margin-top:2rem;"><button type="submit">Save</button>
       <a href="{{ url_for(kind) }}" style="margin-left:1rem;">Cancel</a></p>
</form>
""")


################################################################################
# Changelog
################################################################################
def _lines(value: str | None) -> list[str]:
    return [ln.strip() for ln in (value or "").splitlines() if ln.strip()]


def validate_changelog(form) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    data = {
        "version": form.get("version", "").strip(),
        "date": form.get("date", "").strip(),
        "title": form.get("title", "").strip(),
        "summary": form.get("summary", "").strip(),
        "improvements": _lines(form.get("improvements")),
        "fixes": _lines(form.get("fixes")),
    }
    if not data["version"]:
        errors["version"] = "Version is required"
    elif not VERSION_RE.match(data["version"]):
        errors["version"] = "Version must be in format 1.0.0 (numbers and commas allowed)"
    if not data["date"]:
        errors["date"] = "Date is required"
    if not data["title"]:
        errors["title"] = "Title is required"
    elif len(data["title"]) > 200:
        errors["title"] = "Title must be at most 200 characters"
    if not data["summary"]:
        errors["summary"] = "Summary is required"
    elif len(data["summary"]) > 500:
        errors["summary"] = "Summary must be at most 500 characters"
    if not data["improvements"]:
        errors["improvements"] = "At least one improvement is required"
    return data, errors


@app.route("/admin/changelog")
def changelog():
    q = request.args.get("q", "").strip()
    page = page_arg()
    rows, pagination, error = [], {}, None
    try:
        resp = get_api().changelog.page(page=page, limit=page_size(), search=q or None)
        rows = resp.get("data", [])
        pagination = resp.get("pagination") or {}
    except ApiError as exc:
        error = str(exc)
        flash("Failed to load changelog entries", "error")
    return render_template_string(
        TEMPL_CHANGELOG,
        title="Changelog",
        rows=rows,
        q=q,
        page=page,
        pages=list(range(1, int(pagination.get("totalPages") or 1) + 1)),
        error=error,
    )


def _changelog_form(entry_id: int | None = None):
    api = get_api()
    entry, errors, alert = {}, {}, None
    if request.method == "POST":
        entry, errors = validate_changelog(request.form)
        if not errors:
            try:
                if entry_id is None:
                    api.changelog.create(entry)
                else:
                    api.changelog.update(entry_id, entry)
            except ApiError as exc:
                alert = str(exc) or "Failed to save changelog entry"
            else:
                flash(f"Changelog entry {'created' if entry_id is None else 'updated'}")
                return redirect(url_for("changelog"))
    elif entry_id is not None:
        try:
            entry = api.changelog.get(entry_id)
        except ApiError as exc:
            if exc.not_found:
                abort(404)
            raise
        entry = {**entry, "date": (entry.get("date") or "").split("T")[0]}
    else:
        entry = {"date": utc_now().date().isoformat(), "improvements": [], "fixes": []}

    status = 400 if (errors or alert) else 200
    return render_template_string(
        TEMPL_CHANGELOG_FORM,
        title="Edit changelog entry" if entry_id else "New changelog entry",
        entry=entry,
        entry_id=entry_id,
        errors=errors,
        alert=alert,
    ), status


@app.route("/admin/changelog/new", methods=["GET", "POST"])
def changelog_new():
    return _changelog_form()


@app.route("/admin/changelog/<int:entry_id>/edit", methods=["GET", "POST"])
def changelog_edit(entry_id):
    return _changelog_form(entry_id)


@app.route("/admin/changelog/<int:entry_id>/status", methods=["POST"])
def changelog_status(entry_id):
    status = request.form.get("status")
    if status not in ("draft", "published"):
        abort(400)
    try:
        get_api().changelog.set_status(entry_id, status)
    except ApiError as exc:
        flash(str(exc), "error")
    else:
        flash(f"Entry marked as {status}")
    return redirect(url_for("changelog"))


@app.route("/admin/changelog/<int:entry_id>/delete", methods=["GET", "POST"])
def changelog_delete(entry_id):
    api = get_api()
    try:
        entry = api.changelog.get(entry_id)
    except ApiError as exc:
        if exc.not_found:
            abort(404)
        raise

    if request.method == "POST":
        try:
            api.changelog.delete(entry_id)
        except ApiError as exc:
            flash(str(exc), "error")
        else:
            flash("Changelog entry deleted")
        return redirect(url_for("changelog"))

    return render_template_string(
        TEMPL_CONFIRM,
        title="Delete entry?",
        heading="Delete changelog entry?",
        items=[f"{entry.get('version')} – {entry.get('title')}"],
        back=url_for("changelog"),
    )


@app.route("/admin/changelog/bulk-delete", methods=["POST"])
def changelog_bulk_delete():
    ids = _ids_from_form()
    if not ids:
        flash("Select at least one entry", "error")
        return redirect(url_for("changelog"))

    if request.form.get("confirm") != "yes":
        return render_template_string(
            TEMPL_CONFIRM,
            title="Delete entries?",
            heading=f"Delete {len(ids)} changelog entr{'ies' if len(ids) != 1 else 'y'}?",
            items=[f"#{i}" for i in ids],
            ids=ids,
            back=url_for("changelog"),
        )

    try:
        result = get_api().changelog.bulk_delete(ids)
    except ApiError as exc:
        flash(str(exc), "error")
        return redirect(url_for("changelog"))
    n = result.get("deletedCount", len(ids))
    flash(f"Deleted {n} entr{'ies' if n != 1 else 'y'}")
    return redirect(url_for("changelog"))


TEMPL_CHANGELOG = wrap("""
<div class="row" style="align-items:flex-start;">
    <div><h1>Changelog</h1><p class="sub">Release notes</p></div>
    <div style="flex:0;"><a class="button" href="{{ url_for('changelog_new') }}">New entry</a></div>
</div>
{% if error %}<div class="alert">{{ error }}</div>{% endif %}
<form method="get" style="margin-bottom:1rem;">
    <input type="search" name="q" value="{{ q }}" placeholder="Search changelog" aria-label="Search changelog">
</form>
<form method="post" action="{{ url_for('changelog_bulk_delete') }}">
<input type="hidden" name="csrf" value="{{ csrf_token() }}">
<div class="card" style="padding:0;">
<table>
    <thead><tr><th style="width:2rem;"></th><th>Version</th><th>Title</th><th>Date</th><th>Status</th><th></th></tr></thead>
    <tbody>
    {% for e in rows %}
    {% set st = e.status or 'draft' %}
    <tr>
        <td><input type="checkbox" name="ids" value="{{ e.id }}" aria-label="Select {{ e.version }}" style="width:auto;"></td>
        <td><strong>{{ e.version }}</strong></td>
        <td>{{ e.title }}<br><span class="hint">{{ e.summary }}</span></td>
        <td class="hint">{{ e.date|day }}</td>
        <td><span class="pill {{ st }}">{{ st }}</span></td>
        <td style="white-space:nowrap;">
            <a href="{{ url_for('changelog_edit', entry_id=e.id) }}">Edit</a>&nbsp;
            <a href="{{ url_for('changelog_delete', entry_id=e.id) }}">Delete</a>&nbsp;
            <button class="ghost" type="submit" form="status-{{ e.id }}">
                {{ 'Unpublish' if st == 'published' else 'Publish' }}</button>
        </td>
    </tr>
    {% else %}
    <tr><td colspan="6" class="hint">No changelog entries found.</td></tr>
    {% endfor %}
    </tbody>
</table>
</div>
{% if rows %}<button class="danger" type="submit">Delete selected</button>{% endif %}
</form>
{% for e in rows %}
<form id="status-{{ e.id }}" method="post" action="{{ url_for('changelog_status', entry_id=e.id) }}" hidden>
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <input type="hidden" name="status" value="{{ 'draft' if (e.status or 'draft') == 'published' else 'published' }}">
</form>
{% endfor %}
{% if pages|length > 1 %}
<nav class="pager">
    {% for p in pages %}
        {% if p == page %}<span>{{ p }}</span>
        {% else %}<a href="{{ url_for('changelog', q=q or None, page=p) }}">{{ p }}</a>{% endif %}
    {% endfor %}
</nav>
{% endif %}
""")

TEMPL_CHANGELOG_FORM = wrap("""
<h1>{{ title }}</h1>
<p class="sub"><a href="{{ url_for('changelog') }}">← Back to changelog</a></p>
{% if alert %}<div class="alert">{{ alert }}</div>{% endif %}
<form method="post" data-busy>
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <div class="row">
        <div>
            <label for="version">Version</label>
            <input id="version" name="version" value="{{ entry.version or '' }}" placeholder="1.0.0">
            {% if errors.version %}<p class="err">{{ errors.version }}</p>{% endif %}
        </div>
        <div>
            <label for="date">Date</label>
            <input id="date" name="date" type="date" value="{{ entry.date or '' }}">
            {% if errors.date %}<p class="err">{{ errors.date }}</p>{% endif %}
        </div>
    </div>
    <label for="title">Title</label>
    <input id="title" name="title" value="{{ entry.title or '' }}">
    {% if errors.title %}<p class="err">{{ errors.title }}</p>{% endif %}
    <label for="summary">Summary</label>
    <textarea id="summary" name="summary">{{ entry.summary or '' }}</textarea>
    {% if errors.summary %}<p class="err">{{ errors.summary }}</p>{% endif %}
    <label for="improvements">Improvements <span class="hint">(one per line)</span></label>
    <textarea id="improvements" name="improvements">{{ (entry.improvements or [])|join('\\n') }}</textarea>
    {% if errors.improvements %}<p class="err">{{ errors.improvements }}</p>{% endif %}
    <label for="fixes">Fixes <span class="hint">(one per line)</span></label>
    <textarea id="fixes" name="fixes">{{ (entry.fixes or [])|join('\\n') }}</textarea>
    <p style="margin-top:2rem;"><button type="submit">Save</button>
       <a href="{{ url_for('changelog') }}" style="margin-left:1rem;">Cancel</a></p>
</form>
""")


################################################################################
# Tags
################################################################################
def _tag_rows(tags: list[dict], q: str) -> list[dict]:
    """Filter by *q*, attach cloud size + usage share."""
    total = sum(int(t.get("count") or 0) for t in tags) or 1
    needle = q.lower()
    rows = [dict(t) for t in tags if needle in (t.get("name") or "").lower()]
    max_count = max((int(r.get("count") or 0) for r in rows), default=0)
    for r in rows:
        cnt = int(r.get("count") or 0)
        r["size"] = f"{cloud_size(cnt, max_count)}rem"
        r["bar"] = round(cnt / max_count * 100) if max_count else 0
        r["share"] = f"{cnt / total * 100:.1f}%"
    return rows


def _render_tags(*, modal: TagModal | None = None, values: dict | None = None):
    q = request.args.get("q", "").strip()
    view = "list" if request.args.get("view") == "list" else "cloud"
    tags, error = [], None
    try:
        tags = get_api().tags.list()
    except ApiError as exc:
        error = str(exc) or "Failed to fetch tags"

    rows = _tag_rows(tags, q)
    return render_template_string(
        TEMPL_TAGS,
        title="Tags",
        rows=rows,
        q=q,
        view=view,
        error=error,
        total_uses=sum(int(r.get("count") or 0) for r in rows),
        modal=modal,
        values=values or {},
        tabs=TABS,
    )


@app.route("/admin/tags")
def tags_index():
    return _render_tags()


@app.route("/admin/tags/suggestions")
def tag_suggestions():
    q = request.args.get("q", "")
    if len(q) < SUGGEST_MIN_CHARS:
        return jsonify(data=[])
    try:
        data = get_api().tags.suggest(q, SUGGEST_LIMIT)
    except ApiError:
        app.logger.exception("Failed to fetch tag suggestions")
        data = []
    return jsonify(data=data)


def _modal_values(form, defaults: dict) -> dict:
    values = dict(defaults)
    for key in ("from", "to", "into", "tag", "confirm"):
        if key in form:
            values[key] = form.get(key, "").strip() if key != "confirm" else form.get(key, "")
    if "sources" in form or "sources_entry" in form:
        sources: list[str] = []
        for piece in split_tag_field(form.get("sources")) + split_tag_field(
            form.get("sources_entry")
        ):
            piece = piece.strip()
            if not has_tag(sources, piece):
                sources.append(piece)
        values["sources"] = sources
    return values


def _modal_operation(tab: str, values: dict):
    if tab == "merge":
        return Merge(values["sources"], values["into"])
    if tab == "delete":
        return Delete(values["tag"], values["confirm"])
    return Rename(values["from"], values["to"])


@app.route("/admin/tags/manage", methods=["GET", "POST"])
def tags_manage():
    modal = TagModal(
        request.values.get("selected") or request.args.get("tag"),
        active=request.values.get("tab", "rename"),
    )
    values = modal.defaults()
    if request.method == "GET":
        return _render_tags(modal=modal, values=values)

    values = _modal_values(request.form, values)
    op = _modal_operation(modal.active, values)
    tab = modal.tab
    tab.submit(op, get_api().tags, on_success=lambda _result: flash(tab.toast))
    if tab.closed:
        app.logger.info("%s", tab.toast)
        return redirect(url_for("tags_index"))
    return _render_tags(modal=modal, values=values), 400


TEMPL_TAGS = wrap(TAG_INPUT_MACRO + """
<div class="row" style="align-items:flex-start;">
    <div><h1>Tags</h1><p class="sub">All tags used in blog posts</p></div>
    <div style="flex:0;"><a class="button" href="{{ url_for('tags_manage') }}">Manage tags</a></div>
</div>
<div class="row" style="margin-bottom:1rem;">
    <form method="get">
        <input type="hidden" name="view" value="{{ view }}">
        <input type="search" name="q" value="{{ q }}" placeholder="Search tags..." aria-label="Search tags">
    </form>
    <div style="flex:0;white-space:nowrap;">
        {% for val, label in [('cloud','Cloud view'),('list','List view')] %}
            <a class="button {{ '' if view == val else 'ghost' }}" href="{{ url_for('tags_index', q=q or None, view=val) }}">{{ label }}</a>
        {% endfor %}
    </div>
</div>
{% if error %}<div class="alert">{{ error }}</div>{% endif %}
<div class="card">
{% if not rows %}
    <p class="hint" style="text-align:center;">{{ 'No tags found matching your search.' if q else 'No tags yet.' }}</p>
{% elif view == 'cloud' %}
    <div style="display:flex;flex-wrap:wrap;gap:.8rem 1.2rem;justify-content:center;align-items:center;">
    {% for t in rows %}
        <a href="{{ url_for('posts', tag=t.name) }}" style="font-size:{{ t.size }};"
           title="{{ t.count|plural('post') }}">#{{ t.name }}</a>
    {% endfor %}
    </div>
    <p class="hint" style="text-align:center;margin-top:1.5rem;">{{ rows|length|plural('tag') }} · Click a tag to filter blog posts</p>
{% else %}
    <table>
        <thead><tr><th>Tag name</th><th style="text-align:right;">Post count</th><th style="text-align:right;">Usage</th><th></th></tr></thead>
        <tbody>
        {% for t in rows %}
        <tr>
            <td><a href="{{ url_for('posts', tag=t.name) }}">#{{ t.name }}</a></td>
            <td style="text-align:right;" class="hint">{{ t.count|plural('post') }}</td>
            <td style="text-align:right;">
                <div style="display:inline-block;width:10rem;background:var(--line);border-radius:.4rem;vertical-align:middle;">
                    <div class="bar" style="width:{{ t.bar }}%;"></div></div>
                <span class="hint">{{ t.share }}</span>
            </td>
            <td style="text-align:right;"><a href="{{ url_for('tags_manage', tag=t.name) }}">Manage</a></td>
        </tr>
        {% endfor %}
        </tbody>
    </table>
{% endif %}
</div>
{% if rows %}<p class="hint" style="text-align:center;">Total posts with tags: {{ total_uses }}</p>{% endif %}

{% if modal %}
{% set tab = modal.tab %}
<div class="overlay">
<div class="dialog" role="dialog" aria-modal="true" aria-labelledby="tm-title">
    <div class="row">
        <h2 id="tm-title" style="margin:0;">Tag management</h2>
        <a href="{{ url_for('tags_index') }}" style="flex:0;" aria-label="Close">×</a>
    </div>
    <p class="hint">Manage tags across all blog posts. These operations cannot be undone.</p>
    <nav class="tabs">
        {% for name in tabs %}
        <a href="{{ url_for('tags_manage', tab=name, tag=modal.selected or None) }}"
           {% if name == modal.active %}aria-current="page"{% endif %}>{{ name|capitalize }}</a>
        {% endfor %}
    </nav>
    {% if tab.error %}<div class="alert" role="alert">{{ tab.error }}</div>{% endif %}
    <form method="post" action="{{ url_for('tags_manage') }}" data-busy class="tag-op" data-tab="{{ modal.active }}">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <input type="hidden" name="tab" value="{{ modal.active }}">
        <input type="hidden" name="selected" value="{{ modal.selected }}">
        {% if modal.active == 'rename' %}
            <label for="rename-from">Current tag name</label>
            <input id="rename-from" name="from" value="{{ values['from'] }}" placeholder="Enter current tag name">
            <label for="rename-to">New tag name</label>
            <input id="rename-to" name="to" value="{{ values['to'] }}" placeholder="Enter new tag name">
            {% set ready = values['from'] and values['to'] and values['from'] != values['to'] %}
            <p style="margin-top:1.5rem;"><button type="submit" {% if not ready or tab.busy %}disabled{% endif %}>Rename tag</button></p>
        {% elif modal.active == 'merge' %}
            <label>Tags to merge</label>
            {{ tag_input('sources', values['sources'], placeholder='Select tags to merge...') }}
            <p class="hint">Select multiple tags that will be merged</p>
            <label for="merge-into">Merge into</label>
            <input id="merge-into" name="into" value="{{ values['into'] }}" placeholder="Enter target tag name">
            <p class="hint">All selected tags will be replaced with this tag</p>
            {% set ready = values['sources'] and values['into'] and values['into'] not in values['sources'] %}
            <p style="margin-top:1.5rem;"><button type="submit" {% if not ready or tab.busy %}disabled{% endif %}>Merge tags</button></p>
        {% else %}
            <div class="alert">This will permanently remove the tag from all blog posts. This action cannot be undone.</div>
            <label for="delete-tag">Tag to delete</label>
            <input id="delete-tag" name="tag" value="{{ values['tag'] }}" placeholder="Enter tag name to delete">
            <label for="delete-confirm">Type tag name to confirm</label>
            <input id="delete-confirm" name="confirm" value="{{ values['confirm'] }}" placeholder="Type tag name to confirm deletion" autocomplete="off">
            {% set ready = values['tag'] and values['confirm'] == values['tag'] %}
            <p style="margin-top:1.5rem;"><button class="danger" type="submit" {% if not ready or tab.busy %}disabled{% endif %}>Delete tag</button></p>
        {% endif %}
    </form>
</div>
</div>
<script>
(() => {
    // keep the submit button in step with the fields, like the server does
    const form = document.querySelector('form.tag-op');
    if (!form) return;
    const btn = form.querySelector('button[type=submit]');
    const val = n => (form.querySelector(`[name="${n}"]`) || {}).value || '';
    const ready = {
        rename: () => val('from').trim() && val('to').trim() && val('from').trim() !== val('to').trim(),
        merge: () => {
            const src = val('sources') ? val('sources').split(',') : [];
            return src.length && val('into').trim() && !src.includes(val('into').trim());
        },
        delete: () => val('tag').trim() && val('confirm') === val('tag').trim(),
    }[form.dataset.tab];
    const sync = () => { btn.disabled = !ready(); };
    form.addEventListener('input', sync);
    form.addEventListener('change', sync);
    sync();
})();
</script>
""" + TAG_INPUT_SCRIPT + """
{% endif %}
""")


################################################################################
# CLI – tag lifecycle from a terminal
################################################################################
tags_cli = AppGroup("tags", help="Rename, merge or delete tags across all posts.")
app.cli.add_command(tags_cli)


def _run_cli(op) -> None:
    tab = TagModal().tabs[
        {Rename: "rename", Merge: "merge", Delete: "delete"}[type(op)]
    ]
    tab.submit(op, get_api().tags)
    if tab.error:
        click.secho(f"✗  {tab.error}", fg="red", err=True)
        raise SystemExit(1)
    click.secho(f"✓  {tab.toast}", fg="green")


@tags_cli.command("list")
def cli_list():
    """Print every tag with its post count."""
    try:
        rows = get_api().tags.list()
    except ApiError as exc:
        raise click.ClickException(str(exc)) from exc
    for r in rows:
        click.echo(f"{r.get('count', 0):>5}  {r.get('name')}")


@tags_cli.command("rename")
@click.argument("old")
@click.argument("new")
def cli_rename(old: str, new: str):
    """Rename OLD to NEW on every post."""
    _run_cli(Rename(old.strip(), new.strip()))


@tags_cli.command("merge")
@click.argument("sources", nargs=-1, required=True)
@click.option("--into", required=True, help="Tag that replaces all SOURCES")
def cli_merge(sources: tuple[str, ...], into: str):
    """Replace every tag in SOURCES with --into."""
    _run_cli(Merge([s.strip() for s in sources], into.strip()))


@tags_cli.command("delete")
@click.argument("tag")
@click.option("--confirm", prompt="Type the tag name to confirm", help="Must equal TAG")
def cli_delete(tag: str, confirm: str):
    """Strip TAG from every post."""
    _run_cli(Delete(tag.strip(), confirm))


################################################################################
# Error pages
################################################################################
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title="Not found"), 404


@app.errorhandler(ApiError)
def api_unavailable(exc):
    app.logger.warning("Unhandled API error on %s: %s", request.path, exc)
    return render_template_string(TEMPL_API_ERROR, title="API error", message=str(exc)), 502


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page.  With debug on, Flask shows the Werkzeug debugger
    instead and never reaches this handler.
    """
    return render_template_string(TEMPL_500, title="Error"), 500


TEMPL_404 = wrap("""
<h1>Page not found</h1>
<p>The page you asked for doesn’t exist.
   <a href="{{ url_for('dashboard') }}">Back to the dashboard</a>.</p>
""")

TEMPL_API_ERROR = wrap("""
<h1>The content API is not responding</h1>
<div class="alert">{{ message }}</div>
<p><a href="{{ request.path }}">Try again</a> or go <a href="{{ url_for('dashboard') }}">back to the dashboard</a>.</p>
""")

TEMPL_500 = wrap("""
<h1>Internal Server Error</h1>
<p>Something broke on our side. Please try again in a minute.</p>
""")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(debug=True)
