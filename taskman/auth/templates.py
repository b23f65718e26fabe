"""HTML pages served by the OAuth callback listener.

Every interpolated string goes through :func:`escape_html` first.
"""

from __future__ import annotations

import html


DEFAULT_SUCCESS_MESSAGE = (
    "Authentication successful! You can close this window and return to the terminal."
)

_BASE_STYLE = """
  body {{ font-family: "JetBrains Mono", "Fira Code", Menlo, Consolas, monospace;
         display: flex; align-items: center; justify-content: center;
         min-height: 100vh; margin: 0; background: #0d0d0d; color: #d0d0d0; }}
  .terminal {{ width: 560px; border: 1px solid #333; border-radius: 6px;
               background: #141414; box-shadow: 0 4px 24px rgba(0,0,0,.6); }}
  .terminal-header {{ padding: .5rem 1rem; border-bottom: 1px solid #333;
                      color: #888; font-size: .8rem; }}
  .terminal-body {{ padding: 1.5rem 1rem; }}
  .status {{ font-weight: bold; color: {accent}; }}
  .hint {{ color: #888; font-size: .85rem; margin-top: 1.5rem; }}
  button {{ font: inherit; background: none; color: {accent};
            border: 1px solid {accent}; border-radius: 4px;
            padding: .3rem .8rem; margin-right: .5rem; cursor: pointer; }}
  @media (max-width: 480px) {{ .terminal {{ width: 90%; }} }}
"""

_SUCCESS_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Authentication Successful - TaskMan</title>
<style>{style}</style>
</head>
<body>
<div class="terminal">
  <div class="terminal-header">taskman ~ auth</div>
  <div class="terminal-body">
    <p><span class="status success-icon" role="img" aria-label="Success checkmark">[&#x2713;]</span>
       <span class="status">Taskman AUTHENTICATED</span></p>
    <p class="message">{message}</p>
    <p class="hint countdown-container" aria-live="polite">
      This window will close in: <span id="countdown">3</span>s
    </p>
    <button type="button" onclick="closeWindow()" aria-label="Close window manually">Close Window</button>
  </div>
</div>
<script>
  let timeLeft = 3;
  function closeWindow() {{ window.close(); }}
  function updateCountdown() {{
    timeLeft -= 1;
    document.getElementById('countdown').textContent = String(Math.max(timeLeft, 0));
    if (timeLeft <= 0) {{ closeWindow(); }} else {{ setTimeout(updateCountdown, 1000); }}
  }}
  setTimeout(updateCountdown, 1000);
  document.addEventListener('keydown', function (event) {{
    if (event.key === 'Enter' || event.key === 'Escape') {{ closeWindow(); }}
  }});
</script>
</body>
</html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Authentication Error - TaskMan</title>
<style>{style}</style>
</head>
<body>
<div class="terminal">
  <div class="terminal-header">taskman ~ auth</div>
  <div class="terminal-body" role="alert">
    <p><span class="status error-icon" role="img" aria-label="Error icon">[&#x2717;]</span>
       <span class="status">Authentication Error</span></p>
    <p class="error-message">{error}</p>
    {description}
    <button type="button" onclick="closeWindow()" aria-label="Close window">Close Window</button>
    <p class="hint help-text">
      Return to the terminal and run the login command again.
      If you continue to experience issues, check your network connection.
    </p>
  </div>
</div>
<script>
  function closeWindow() {{ window.close(); }}
  document.addEventListener('keydown', function (event) {{
    if (event.key === 'Escape') {{ closeWindow(); }}
  }});
</script>
</body>
</html>"""

_SUCCESS_ACCENT = "#00FF66"
_ERROR_ACCENT = "#FF3366"


def escape_html(text: str) -> str:
    """Entity-escape ``& < > " ' /`` in ``text``.

    Parameters
    ----------
    text : str
        Untrusted text (provider error descriptions, messages).

    Returns
    -------
    str
        Text safe to interpolate into element content or attributes.
    """
    return html.escape(str(text), quote=True).replace("/", "&#x2F;")


def render_success_page(message: str | None = None) -> str:
    """Render the page shown after a successful redirect.

    Parameters
    ----------
    message : str, optional
        Text shown below the banner.

    Returns
    -------
    str
        A complete HTML document with a three-second auto-close countdown.
    """
    return _SUCCESS_HTML.format(
        style=_BASE_STYLE.format(accent=_SUCCESS_ACCENT),
        message=escape_html(message or DEFAULT_SUCCESS_MESSAGE),
    )


def render_error_page(error: str, description: str | None = None) -> str:
    """Render the page shown when the redirect failed.

    Parameters
    ----------
    error : str
        Short error text (the provider's ``error`` code or a title).
    description : str, optional
        Longer explanation; the section is omitted when empty.

    Returns
    -------
    str
        A complete HTML document.
    """
    description_html = (
        f'<p class="error-description">{escape_html(description)}</p>' if description else ""
    )
    return _ERROR_HTML.format(
        style=_BASE_STYLE.format(accent=_ERROR_ACCENT),
        error=escape_html(error),
        description=description_html,
    )
