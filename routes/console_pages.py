from flask import render_template_string

_STYLE = """
  body { font-family: system-ui; max-width: 720px; margin: 40px auto; color: #1f2937; }
  .card { border: 1px solid #e5e7eb; border-radius: 10px; padding: 24px; }
  .badge { display: inline-block; padding: 2px 8px; border-radius: 999px; font-size: 12px; background: #f3f4f6; }
  .ok { background: #dcfce7; color: #166534; }
  .fail { background: #fee2e2; color: #991b1b; }
  .msg { padding: 10px; background: #fef2f2; border: 1px solid #fecaca; border-radius: 6px; color: #b91c1c; }
  button { padding: 10px 16px; background: #F26623; color: white; border: 0; border-radius: 8px; font-weight: 600; }
  button:disabled { background: #9ca3af; }
  table { width: 100%; border-collapse: collapse; font-size: 13px; }
  td, th { text-align: left; padding: 4px 6px; border-bottom: 1px solid #f3f4f6; }
"""

LOGIN_TEMPLATE = """
<html>
  <head><title>Admin Access</title><style>{{ style }}</style></head>
  <body>
    <div class="card">
      <h1>Admin Access</h1>
      <p>Digital Chain Bank Administration</p>
      <p>
        {% if s.locked %}<span class="badge fail">Locked</span>{% endif %}
        <span class="badge">Attempts remaining: {{ s.attempts_remaining }}</span>
        <span class="badge">Active sessions: {{ s.active_sessions }}</span>
      </p>
      <form method="post" action="{{ url_for('console.login', tab=tab) }}">
        <p><label>Email<br><input type="email" name="username" value="{{ s.username }}" required
                  {% if s.locked %}disabled{% endif %}></label></p>
        <p><label>Password<br><input id="password" type="password" name="password" required
                  {% if s.locked %}disabled{% endif %}></label>
           <label><input type="checkbox"
                  onchange="document.getElementById('password').type = this.checked ? 'text' : 'password'"> Show</label></p>
        {% if s.message %}<p class="msg">{{ s.message }}</p>{% endif %}
        <button type="submit" {% if s.locked %}disabled{% endif %}>Access Admin Panel</button>
      </form>
      {% include_attempts %}
    </div>
  </body>
</html>
"""

DASHBOARD_TEMPLATE = """
<html>
  <head><title>Admin Panel</title><style>{{ style }}</style></head>
  <body>
    <div class="card">
      <h1>Admin Panel - Digital Chain Bank</h1>
      <p>Authenticated as: {{ s.email }}</p>
      <p>
        <span class="badge">Session {{ s.session_id }}</span>
        <span class="badge">Expires in <span id="countdown" data-seconds="{{ s.remaining_seconds }}">{{ s.remaining_seconds // 60 }}:{{ '%02d' % (s.remaining_seconds % 60) }}</span></span>
        <span class="badge">Active sessions: <span id="active">{{ s.active_sessions }}</span></span>
      </p>
      <form method="post" action="{{ url_for('console.logout', tab=tab) }}">
        <input type="hidden" name="csrf_token" value="{{ csrf_token }}">
        <button type="submit">Logout</button>
      </form>
      <h3>Active sessions</h3>
      <table>
        <tr><th>Session</th><th>User</th><th>IP</th><th>Location</th><th>Login</th></tr>
        {% for row in s.recent_sessions %}
        <tr><td>{{ row.session_id[:8] }}...</td><td>{{ row.email }}</td><td>{{ row.ip }}</td>
            <td>{{ row.city }}, {{ row.country }}</td><td>{{ row.login_time }}</td></tr>
        {% endfor %}
      </table>
      {% include_attempts %}
    </div>
    <script>
      (function () {
        var tab = {{ tab|tojson }}, token = {{ csrf_token|tojson }}, last = 0;
        var el = document.getElementById("countdown"), left = parseInt(el.dataset.seconds, 10);
        setInterval(function () {
          left = Math.max(0, left - 1);
          el.textContent = Math.floor(left / 60) + ":" + String(left % 60).padStart(2, "0");
          if (left === 0) { location.reload(); }
        }, 1000);
        function activity() {
          var now = Date.now();
          if (now - last < 5000) { return; }
          last = now;
          fetch("{{ url_for('console.activity') }}?tab=" + encodeURIComponent(tab),
                {method: "POST", headers: {"X-CSRF-Token": token}})
            .then(function (r) { if (r.status === 401) { location.reload(); } });
        }
        ["mousedown", "mousemove", "keypress", "scroll", "touchstart"].forEach(function (name) {
          document.addEventListener(name, activity, {passive: true});
        });
        setInterval(function () {
          fetch("{{ url_for('console.status') }}?tab=" + encodeURIComponent(tab))
            .then(function (r) { return r.json(); })
            .then(function (s) {
              if (!s.authenticated) { location.reload(); return; }
              document.getElementById("active").textContent = s.active_sessions;
              left = s.remaining_seconds;
            });
        }, 5000);
      })();
    </script>
  </body>
</html>
"""

_ATTEMPTS_BLOCK = """
      <h3>Recent login attempts</h3>
      <table>
        <tr><th>Time</th><th>IP</th><th>Country</th><th>Result</th></tr>
        {% for a in s.recent_attempts %}
        <tr><td>{{ a.timestamp }}</td><td>{{ a.ip }}</td><td>{{ a.country }}</td>
            <td><span class="badge {{ 'ok' if a.success else 'fail' }}">{{ 'Success' if a.success else 'Failed' }}</span></td></tr>
        {% else %}
        <tr><td colspan="4">No attempts yet</td></tr>
        {% endfor %}
      </table>
"""


def render_console_page(snapshot: dict, tab: str, csrf_token: str) -> str:
    template = DASHBOARD_TEMPLATE if snapshot.get("authenticated") else LOGIN_TEMPLATE
    return render_template_string(
        template.replace("{% include_attempts %}", _ATTEMPTS_BLOCK),
        s=snapshot,
        tab=tab,
        csrf_token=csrf_token,
        style=_STYLE,
    )
