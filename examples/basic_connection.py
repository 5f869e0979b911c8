"""
Example: Basic ADT usage with sap_adt
=====================================

Connect to an on-premise system with user/password and read and write
ABAP source through the ADT REST interface.
"""

from sap_adt import AdtConfig, PermissionDeniedError, create_connection


def example_read_source():
    """Read the active source of a class."""

    cfg = AdtConfig(
        url="https://your-s4.example.com:44300",
        auth_type="basic",
        client="100",
        username="DEVELOPER",
        password="PASSWORD",
    )

    with create_connection(cfg) as conn:
        conn.connect()
        r = conn.get(
            "/sap/bc/adt/oo/classes/cl_abap_typedescr/source/main",
            headers={"Accept": "text/plain"},
        )
        print(r.text[:500])


def example_stateful_edit():
    """Lock, write and unlock an object inside one stateful session."""
    from sap_adt import config_from_env

    # Reads SAP_URL, SAP_CLIENT, SAP_USERNAME, SAP_PASSWORD
    cfg = config_from_env()
    source_url = "/sap/bc/adt/oo/classes/zcl_demo/source/main"

    with create_connection(cfg) as conn:
        conn.set_session_type("stateful")
        lock = conn.post(
            "/sap/bc/adt/oo/classes/zcl_demo",
            params={"_action": "LOCK", "accessMode": "MODIFY"},
            headers={"Accept": "application/vnd.sap.as+xml"},
        )
        print("Lock response:", lock.status_code)
        # lock handle parsing left to the caller
        conn.put(source_url, data="CLASS zcl_demo DEFINITION PUBLIC.\nENDCLASS.\n")
        conn.set_session_type("stateless")


def example_where_used():
    """usageReferences requests get their own media types automatically."""
    from sap_adt import ConnectionContext

    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<usagereferences:usageReferenceRequest '
        'xmlns:usagereferences="http://www.sap.com/adt/ris/usageReferences">'
        "<usagereferences:affectedObjects/>"
        "</usagereferences:usageReferenceRequest>"
    )
    with ConnectionContext() as ctx:
        try:
            r = ctx.session.post(
                "/sap/bc/adt/repository/informationsystem/usageReferences",
                data=body,
                params={"uri": "/sap/bc/adt/oo/classes/zcl_demo"},
            )
            print(r.text[:500])
        except PermissionDeniedError as e:
            print("Not authorized:", e)


if __name__ == "__main__":
    print("sap_adt Examples")
    print("=" * 50)
    print("\nUncomment the example you want to run:")
    print("  - example_read_source()")
    print("  - example_stateful_edit()")
    print("  - example_where_used()")

    # example_read_source()
    # example_stateful_edit()
    # example_where_used()
