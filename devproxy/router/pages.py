"""HTML served by the proxy itself: the unknown-route error page and the dashboard."""

import html

UNKNOWN_ROUTE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <title>devproxy - 502</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               background: #1a1a2e; color: #e0e0e0; padding: 2rem; }}
        code {{ color: #0f9b0f; }}
        a {{ color: #7c9aff; }}
    </style>
</head>
<body>
    <h1>502 Unknown route</h1>
    <p>No route registered for <code>{name}</code>.</p>
    <p><a href="{dashboard_url}">View dashboard</a></p>
</body>
</html>
"""

DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>devproxy dashboard</title>
<style>
  * { box-sizing: border-box; margin: 0; padding: 0; }
  body { background: #0f0f1a; color: #e0e0e0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; padding: 2rem; }
  h1 { font-size: 1.4rem; margin-bottom: 1.5rem; color: #fff; }
  table { width: 100%; border-collapse: collapse; }
  th { text-align: left; padding: 0.5rem 1rem; border-bottom: 1px solid #2a2a3e; color: #8888aa; font-size: 0.8rem; text-transform: uppercase; }
  td { padding: 0.6rem 1rem; border-bottom: 1px solid #1a1a2e; }
  .dot { display: inline-block; width: 8px; height: 8px; border-radius: 50%; margin-right: 0.5rem; }
  .dot-running { background: #4ade80; }
  .dot-stopped { background: #888; }
  .dot-error { background: #ef4444; }
  .dot-starting { background: #facc15; }
  a { color: #7c9aff; text-decoration: none; }
  .empty { color: #666; text-align: center; padding: 3rem; }
</style>
</head>
<body>
<h1>devproxy</h1>
<table>
  <thead><tr><th>Name</th><th>Status</th><th>Target</th><th>Proxy URL</th></tr></thead>
  <tbody id="routes"></tbody>
</table>
<div id="empty" class="empty" style="display:none">No routes registered</div>
<script>
function esc(s) {
  return String(s).replace(/[&<>"']/g, function(c) {
    return {'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;', "'": '&#39;'}[c];
  });
}
function render(routes) {
  var tb = document.getElementById('routes');
  var em = document.getElementById('empty');
  if (!routes.length) { tb.innerHTML = ''; em.style.display = ''; return; }
  em.style.display = 'none';
  tb.innerHTML = routes.map(function(r) {
    return '<tr>'
      + '<td>' + esc(r.name) + '</td>'
      + '<td><span class="dot dot-' + esc(r.status) + '"></span>' + esc(r.status) + '</td>'
      + '<td>' + esc(r.target_host) + ':' + esc(r.target_port) + '</td>'
      + '<td><a href="' + esc(r.url) + '" target="_blank">' + esc(r.url) + '</a></td>'
      + '</tr>';
  }).join('');
}
function refresh() {
  fetch('/api/routes').then(function(r) { return r.json(); }).then(render).catch(function() {});
}
refresh();
setInterval(refresh, 3000);
</script>
</body>
</html>
"""


def unknown_route_page(name: str, dashboard_url: str = "/") -> str:
    return UNKNOWN_ROUTE_TEMPLATE.format(name=html.escape(name), dashboard_url=html.escape(dashboard_url))
