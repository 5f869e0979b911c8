"""
Example: Persist a SAP session across processes
================================================

The snapshot (cookies + CSRF token) of one connection is written to disk
and loaded by another, which then continues the same SAP session.
"""

from sap_adt import ConnectionContext, FileSessionStorage


def save_then_resume():
    storage = FileSessionStorage(".sessions")

    # Reads SAP_* environment variables
    with ConnectionContext(session_id="worker-1", session_storage=storage) as ctx:
        ctx.session.connect()
        if ctx.save_session():
            print("Saved session", ctx.session.get_session_id())

    with ConnectionContext(session_id="worker-1", session_storage=storage) as ctx:
        if ctx.restore_session():
            print("Resumed with CSRF token:", bool(ctx.session.csrf_token))
        r = ctx.session.get("/sap/bc/adt/discovery")
        print(r.status_code)

    print("Removed stale:", storage.cleanup_stale_sessions(max_age_ms=30 * 60 * 1000))


if __name__ == "__main__":
    save_then_resume()
