import pytest

from pathgate.routing import load_route_table, set_route_table

SAMPLE_ROUTES = {
    "default_rule": {
        "name": "web",
        "paths": ["/*"],
        "backend": "https://web.azurewebsites.net",
    },
    "rules": [
        {
            "name": "app1",
            "paths": ["/app1/*"],
            "backend": "https://app1.azurewebsites.net",
            "host_policy": "backend",
            "auth": {
                "mode": "easy_auth",
                "forward_proxy": {"convention": "Standard"},
            },
        },
        {
            "name": "api",
            "paths": ["/api/*"],
            "backend": "http://api.internal:8080/base",
            "host_policy": "override",
            "host_override": "api.contoso.com",
            "auth": {
                "mode": "custom",
                "forward_proxy": {
                    "convention": "Custom",
                    "custom_host_header_name": "X-Gateway-Host",
                    "custom_proto_header_name": "X-Gateway-Proto",
                },
            },
        },
        {
            "name": "api-v2",
            "paths": ["/api/v2/*"],
            "backend": "http://api-v2.internal:8080",
        },
        {
            "name": "login",
            "paths": ["/login"],
            "backend": "https://login.contoso.com",
            "host_policy": "preserve",
        },
        {
            "name": "legacy",
            "paths": ["/legacy/*"],
            "backend": "http://legacy.internal",
            "strip_prefix": False,
            "auth": {
                "mode": "easy_auth",
                "provider": "google",
                "forward_proxy": {
                    "convention": "Custom",
                    "custom_host_header_name": "X-Original-Host",
                },
            },
        },
    ],
}


@pytest.fixture
def route_table():
    return load_route_table(SAMPLE_ROUTES)


@pytest.fixture
def active_route_table(route_table):
    """Install the sample table as the process-wide route table."""
    set_route_table(route_table)
    yield route_table
    set_route_table(None)
