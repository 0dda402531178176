"""Tests for the configuration document model, rendering and parsing."""

from __future__ import annotations

import copy
import json

import pytest

from xcp.config.document import CUSTOM_RULE_KEY, ConfigDocument
from xcp.core.routing import RoutingRuleEngine
from xcp.models import (
    CONTROL_TAG,
    RELAY_TAG,
    Account,
    MatchKind,
    Role,
    RoutingRule,
    RoutingTable,
    RuleKind,
)
from xcp.utils.exceptions import ConfigurationError, NotConfiguredError

pytestmark = [pytest.mark.unit, pytest.mark.config]


def _inbound(data, tag):
    return next(item for item in data["inbounds"] if item["tag"] == tag)


class TestRendering:
    """Engine JSON produced from a document."""

    def test_gateway_sections(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        assert data["api"] == {"tag": CONTROL_TAG, "services": ["StatsService"]}
        assert data["stats"] == {}
        assert data["policy"]["levels"]["0"]["statsUserUplink"] is True
        assert data["routing"]["domainStrategy"] == "IPIfNonMatch"
        assert [item["tag"] for item in data["inbounds"]] == [CONTROL_TAG, "ss-in", "http-in", "socks-in"]
        assert [item["protocol"] for item in data["outbounds"]] == ["freedom", "blackhole"]

    def test_control_inbound(self, gateway_doc):
        control = _inbound(gateway_doc.to_engine_dict(), CONTROL_TAG)
        assert control["protocol"] == "dokodemo-door"
        assert control["listen"] == "127.0.0.1"
        assert control["settings"] == {"address": "127.0.0.1"}

    def test_accounts_rendered_into_three_listeners(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        account = gateway_doc.accounts[0]
        relay = _inbound(data, "ss-in")["settings"]
        assert relay["clients"] == [
            {"email": account.identifier, "password": account.secret, "method": "aes-256-gcm"}
        ]
        assert relay["network"] == "tcp,udp"
        http = _inbound(data, "http-in")["settings"]
        socks = _inbound(data, "socks-in")["settings"]
        expected = [{"user": account.identifier, "pass": account.secret}]
        assert http["accounts"] == expected
        assert socks["accounts"] == expected
        assert socks["auth"] == "password"
        assert socks["udp"] is True

    def test_edge_upstream_and_loopback(self, edge_doc):
        data = edge_doc.to_engine_dict()
        proxy = data["outbounds"][0]
        assert proxy["tag"] == "proxy"
        assert proxy["protocol"] == "shadowsocks"
        assert proxy["settings"]["servers"][0] == {
            "address": "1.2.3.4",
            "port": 443,
            "method": "aes-256-gcm",
            "password": "secretX",
        }
        loopback = _inbound(data, "socks-local")
        assert loopback["settings"] == {"auth": "noauth"}
        assert loopback["listen"] == "127.0.0.1"

    def test_custom_rules_carry_marker(self, gateway_doc):
        doc = RoutingRuleEngine.add(gateway_doc, "blocked", "domain", "ads.example.com")
        rules = doc.to_engine_dict()["routing"]["rules"]
        assert rules[-1] == {
            "type": "field",
            "domain": ["ads.example.com"],
            "outboundTag": "blocked",
            CUSTOM_RULE_KEY: True,
        }
        assert all(CUSTOM_RULE_KEY not in rule for rule in rules[:-1])

    def test_to_json_ends_with_newline(self, gateway_doc):
        text = gateway_doc.to_json()
        assert text.endswith("}\n")
        assert json.loads(text)["xcp"]["type"] == "gateway"


class TestParsing:
    """Reading engine JSON back into a document."""

    def test_roundtrip_edge_with_custom_rule(self, edge_doc):
        doc = RoutingRuleEngine.add(edge_doc, "direct", "domain", "netflix.com")
        parsed = ConfigDocument.from_json(doc.to_json())
        assert parsed == doc
        assert parsed.rules[-1].kind == RuleKind.BUILTIN_CATCH_ALL
        assert parsed.rules[-2].kind == RuleKind.CUSTOM

    def test_unknown_role(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        data["xcp"]["type"] = "middle"
        with pytest.raises(ConfigurationError, match="Unknown server type"):
            ConfigDocument.from_engine_dict(data)

    def test_missing_metadata(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        del data["xcp"]
        with pytest.raises(ConfigurationError):
            ConfigDocument.from_engine_dict(data)

    def test_not_json(self):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            ConfigDocument.from_json("{nope")

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            ConfigDocument.from_engine_dict(["inbounds"])

    def test_missing_relay_listener(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        data["inbounds"] = [item for item in data["inbounds"] if item["tag"] != RELAY_TAG]
        with pytest.raises(NotConfiguredError):
            ConfigDocument.from_engine_dict(data)

    def test_missing_relay_clients(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        del _inbound(data, RELAY_TAG)["settings"]["clients"]
        with pytest.raises(NotConfiguredError):
            ConfigDocument.from_engine_dict(data)

    def test_listener_lists_must_agree(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        _inbound(data, "http-in")["settings"]["accounts"].append({"user": "ghost", "pass": "x"})
        with pytest.raises(ConfigurationError, match="do not match"):
            ConfigDocument.from_engine_dict(data)

    def test_listener_secrets_must_agree(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        _inbound(data, "socks-in")["settings"]["accounts"][0]["pass"] = "different"
        with pytest.raises(ConfigurationError, match="secrets differ"):
            ConfigDocument.from_engine_dict(data)

    def test_unknown_protocol(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        data["inbounds"].append({"tag": "vmess-in", "port": 9999, "protocol": "vmess"})
        with pytest.raises(ConfigurationError, match="Unsupported listener protocol"):
            ConfigDocument.from_engine_dict(data)

    def test_unrecognized_builtin_rule(self, gateway_doc):
        data = gateway_doc.to_engine_dict()
        data["routing"]["rules"].append({"type": "field", "domain": ["x.com"], "outboundTag": "direct"})
        with pytest.raises(ConfigurationError, match="Unrecognized"):
            ConfigDocument.from_engine_dict(data)

    def test_edge_rule_after_catch_all_rejected(self, edge_doc):
        data = edge_doc.to_engine_dict()
        data["routing"]["rules"].append(
            {"type": "field", "domain": ["x.com"], "outboundTag": "direct", CUSTOM_RULE_KEY: True}
        )
        with pytest.raises(ConfigurationError):
            ConfigDocument.from_engine_dict(data)

    def test_zero_accounts_parse(self, gateway_doc):
        doc = gateway_doc.evolve(accounts=())
        parsed = ConfigDocument.from_json(doc.to_json())
        assert parsed.accounts == ()
        assert parsed.account_lists() == {"ss-in": (), "http-in": (), "socks-in": ()}

    def test_from_file(self, tmp_path, gateway_doc):
        path = tmp_path / "config.json"
        path.write_text(gateway_doc.to_json(), encoding="utf-8")
        assert ConfigDocument.from_file(path) == gateway_doc


class TestInvariants:
    """Whole-document checks enforced on every edit."""

    def test_role_cannot_change(self, gateway_doc):
        with pytest.raises(ConfigurationError, match="role"):
            gateway_doc.evolve(role=Role.EDGE)

    def test_duplicate_accounts_rejected(self, gateway_doc):
        account = gateway_doc.accounts[0]
        with pytest.raises(ConfigurationError):
            gateway_doc.evolve(accounts=(account, account))

    def test_duplicate_listener_ports_rejected(self, gateway_doc):
        listeners = tuple(
            item.model_copy(update={"port": 80}) if item.tag == "socks-in" else item
            for item in gateway_doc.listeners
        )
        with pytest.raises(ConfigurationError):
            gateway_doc.evolve(listeners=listeners)

    def test_gateway_cannot_have_upstream(self, gateway_doc, edge_doc):
        with pytest.raises(ConfigurationError):
            gateway_doc.evolve(outbounds=edge_doc.outbounds)

    def test_edge_needs_catch_all(self, edge_doc):
        routing = edge_doc.routing.model_copy(update={"catch_all": None})
        with pytest.raises(ConfigurationError):
            edge_doc.evolve(routing=routing)

    def test_custom_rule_to_unknown_outbound_rejected(self, gateway_doc):
        rule = RoutingRule(kind=RuleKind.CUSTOM, outbound_tag="proxy", match=MatchKind.IP, values=("1.1.1.1",))
        with pytest.raises(ConfigurationError):
            gateway_doc.evolve(routing=gateway_doc.routing.with_custom_rule(rule))

    def test_catch_all_cannot_sit_in_head(self, edge_doc):
        head = (*edge_doc.routing.head, edge_doc.routing.catch_all)
        with pytest.raises(ValueError, match="must be last"):
            RoutingTable(head=head)

    def test_evolve_leaves_original_untouched(self, gateway_doc):
        before = copy.deepcopy(gateway_doc.to_engine_dict())
        gateway_doc.evolve(accounts=(*gateway_doc.accounts, Account(identifier="bob", secret="pw")))
        assert gateway_doc.to_engine_dict() == before

    def test_lookups(self, edge_doc):
        assert edge_doc.listener("missing") is None
        assert edge_doc.outbound("proxy").upstream.address == "1.2.3.4"
        assert edge_doc.relay_listener().tag == RELAY_TAG
        assert edge_doc.account("nobody") is None
        assert edge_doc.relay_method == "aes-256-gcm"
