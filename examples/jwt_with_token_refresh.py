"""
Example: BTP (JWT) connection with automatic token refresh
===========================================================

With refresh_token and the XSUAA client credentials configured, an expired
bearer token is refreshed once on 401/403 and the request is retried.
"""

from sap_adt import AdtConfig, CredentialsExpiredError, create_connection


def example_self_contained_refresh():
    cfg = AdtConfig(
        url="https://my-abap-env.abap.eu10.hana.ondemand.com",
        auth_type="jwt",
        jwt_token="eyJhbGciOi...",
        refresh_token="3f2a...-r",
        uaa_url="https://acme.authentication.eu10.hana.ondemand.com",
        uaa_client_id="sb-adt-client",
        uaa_client_secret="secret",
    )

    with create_connection(cfg) as conn:
        try:
            conn.connect()
            r = conn.get("/sap/bc/adt/discovery")
            print(r.status_code)
        except CredentialsExpiredError as e:
            print("Log in again:", e)
        # cfg.jwt_token / cfg.refresh_token now hold the refreshed values


class BrokerTokenRefresher:
    """Token owner backed by some external auth broker."""

    def __init__(self, broker):
        self.broker = broker

    def get_token(self) -> str:
        return self.broker.current_access_token()

    def refresh_token(self) -> str:
        return self.broker.refresh()


def example_delegated_refresh(broker):
    from sap_adt import config_from_env

    # SAP_URL, SAP_AUTH_TYPE=jwt, SAP_JWT_TOKEN
    cfg = config_from_env()
    with create_connection(cfg, token_refresher=BrokerTokenRefresher(broker)) as conn:
        r = conn.get("/sap/bc/adt/repository/nodestructure", params={"parent_type": "DEVC/K"})
        print(r.status_code)


if __name__ == "__main__":
    print("Set real values in example_self_contained_refresh() before running it.")
