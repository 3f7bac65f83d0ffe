"""Path normalisation middleware."""


class TrimTrailingSlashMiddleware:
    """Route ``/raw/abc/file.txt/`` the same as ``/raw/abc/file.txt``.

    The path is rewritten in place instead of redirecting, so POST bodies
    are never replayed.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope.get("path", "")
            if len(path) > 1 and path.endswith("/"):
                scope = dict(scope)
                scope["path"] = path[:-1]
                raw_path = scope.get("raw_path")
                if raw_path and raw_path.endswith(b"/"):
                    scope["raw_path"] = raw_path[:-1]
        await self.app(scope, receive, send)
