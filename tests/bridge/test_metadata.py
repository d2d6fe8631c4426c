"""
Brief: Tests for registrar.bridge.metadata SERVICE_* extraction.

Inputs:
  - None

Outputs:
  - None
"""

from registrar.bridge.metadata import (
    collect_declarations,
    container_metadata,
    resolve_declarations,
    service_metadata,
)


def test_port_qualified_declaration_wins_for_its_port():
    """
    Brief: SERVICE_80_NAME overrides SERVICE_NAME only for port 80.

    Inputs:
      - env: global and port-qualified name declarations

    Outputs:
      - None: Asserts name=b on 80 and name=a on 443
    """
    env = ["SERVICE_NAME=a", "SERVICE_80_NAME=b"]
    assert service_metadata(env, {}, "80") == {"name": "b"}
    assert service_metadata(env, {}, "443") == {"name": "a"}


def test_port_qualified_wins_regardless_of_order():
    """
    Brief: A later global declaration never overrides an earlier port one.

    Inputs:
      - env: port-qualified name before global name

    Outputs:
      - None: Asserts the port-qualified value is kept
    """
    env = ["SERVICE_80_NAME=b", "SERVICE_NAME=a"]
    assert service_metadata(env, {}, "80")["name"] == "b"


def test_address_family_override():
    """
    Brief: _IPV4/_IPV6 suffixed keys win for their family only.

    Inputs:
      - env: plain, IPv4 and IPv6 name declarations

    Outputs:
      - None: Asserts x for ipv4 and y for ipv6
    """
    env = ["SERVICE_NAME=a", "SERVICE_NAME_IPV4=x", "SERVICE_NAME_IPV6=y"]
    assert service_metadata(env, {}, "80", "ipv4")["name"] == "x"
    assert service_metadata(env, {}, "80", "ipv6")["name"] == "y"


def test_port_family_declaration_is_highest_rank():
    """
    Brief: Port+family outranks port, global+family and global.

    Inputs:
      - env: one declaration per tier, highest first

    Outputs:
      - None: Asserts the port+family value and fallback per family
    """
    env = [
        "SERVICE_80_TAGS_IPV6=pf",
        "SERVICE_80_TAGS=p",
        "SERVICE_TAGS_IPV6=gf",
        "SERVICE_TAGS=g",
    ]
    assert service_metadata(env, {}, "80", "ipv6")["tags"] == "pf"
    assert service_metadata(env, {}, "80", "ipv4")["tags"] == "p"
    assert service_metadata(env, {}, "443", "ipv6")["tags"] == "gf"
    assert service_metadata(env, {}, "443", "ipv4")["tags"] == "g"


def test_equal_rank_later_declaration_overwrites():
    """
    Brief: Labels come after env, so a same-tier label overrides env.

    Inputs:
      - env and labels both declaring SERVICE_NAME

    Outputs:
      - None: Asserts label value wins
    """
    meta = service_metadata(["SERVICE_NAME=from-env"], {"SERVICE_NAME": "from-label"}, "80")
    assert meta["name"] == "from-label"


def test_non_service_keys_and_valueless_env_are_skipped():
    """
    Brief: Only SERVICE_ keys with a value are collected.

    Inputs:
      - env: unrelated keys and an entry without '='

    Outputs:
      - None: Asserts only the SERVICE_ attribute remains
    """
    env = ["PATH=/bin", "SERVICE_FLAG", "SERVICE_CHECK_HTTP=/health", "SERVICE_=x"]
    assert service_metadata(env, None, "80") == {"check_http": "/health"}


def test_collect_declarations_orders_env_before_labels():
    """
    Brief: collect_declarations yields env entries first.

    Inputs:
      - env list and label mapping

    Outputs:
      - None: Asserts ordering and value splitting on the first '='
    """
    decl = collect_declarations(["SERVICE_A=1=2"], {"SERVICE_B": "3"})
    assert decl == [("SERVICE_A", "1=2"), ("SERVICE_B", "3")]


def test_extraction_is_deterministic():
    """
    Brief: Re-running extraction on unchanged input yields identical output.

    Inputs:
      - env and labels

    Outputs:
      - None: Asserts equal maps and equal key order
    """
    env = ["SERVICE_NAME=a", "SERVICE_80_TAGS=x,y", "SERVICE_IGNORE_IPV6=1"]
    labels = {"SERVICE_80_ID": "custom"}
    first = service_metadata(env, labels, "80")
    second = service_metadata(env, labels, "80")
    assert first == second
    assert list(first) == list(second)


def test_resolve_declarations_skips_other_family():
    """
    Brief: Declarations for the other family are ignored entirely.

    Inputs:
      - declarations: only an IPv6 declaration

    Outputs:
      - None: Asserts empty map for ipv4
    """
    assert resolve_declarations([("SERVICE_IGNORE_IPV6", "1")], "80", "ipv4") == {}


def test_container_metadata_reads_config():
    """
    Brief: container_metadata reads Config.Env and Config.Labels.

    Inputs:
      - container record

    Outputs:
      - None: Asserts merged attributes
    """
    container = {
        "Config": {
            "Env": ["SERVICE_NAME=api"],
            "Labels": {"SERVICE_8080_TAGS": "blue"},
        }
    }
    assert container_metadata(container, "8080") == {"name": "api", "tags": "blue"}
