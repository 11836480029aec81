import threading

import pytest

from models import DNS_KEY_PATTERNS, SETUP_SCOPE, STATE_SCOPE, dns_key
from monitor.watcher import EvidenceWatcher
from monitor.stores import (
    RESOLV_CONF_SERVICE,
    MemoryConfigStore,
    ResolvConfStore,
    SetupError,
    read_resolv_conf,
    setup_scope_values,
)


STATE_KEY = dns_key(STATE_SCOPE, 'en0')
SETUP_KEY = dns_key(SETUP_SCOPE, 'en0')


def test_subscribe_rejects_bad_patterns():
    store = MemoryConfigStore()
    with pytest.raises(SetupError):
        store.subscribe([], lambda keys: None)
    with pytest.raises(SetupError):
        store.subscribe(['State:/Network/Service/[/DNS'], lambda keys: None)


def test_update_batches_changed_keys_into_one_callback():
    store = MemoryConfigStore()
    calls = []
    store.subscribe(DNS_KEY_PATTERNS, calls.append)

    store.update({
        STATE_KEY: {'ServerAddresses': ['9.9.9.9']},
        SETUP_KEY: {'SearchDomains': ['corp.example']},
        'State:/Network/Global/DNS': {'ServerAddresses': ['1.1.1.1']},
    })
    assert len(calls) == 1
    assert sorted(calls[0]) == sorted([STATE_KEY, SETUP_KEY])


def test_unchanged_values_do_not_notify():
    store = MemoryConfigStore({STATE_KEY: {'ServerAddresses': ['9.9.9.9']}})
    calls = []
    store.subscribe(DNS_KEY_PATTERNS, calls.append)
    store.set(STATE_KEY, {'ServerAddresses': ['9.9.9.9']})
    assert calls == []
    store.remove(STATE_KEY)
    assert calls == [[STATE_KEY]]


def test_unsubscribe_stops_delivery():
    store = MemoryConfigStore()
    calls = []
    sub = store.subscribe(DNS_KEY_PATTERNS, calls.append)
    store.unsubscribe(sub)
    store.set(STATE_KEY, {'ServerAddresses': ['9.9.9.9']})
    assert calls == []
    assert sub.active is False


def test_snapshot_read_filters_and_copies():
    store = MemoryConfigStore({
        STATE_KEY: {'ServerAddresses': ['9.9.9.9']},
        'State:/Network/Interface/en0/IPv4': {'Addresses': ['10.0.0.5']},
    })
    got = store.snapshot_read(DNS_KEY_PATTERNS)
    assert list(got) == [STATE_KEY]
    got[STATE_KEY]['ServerAddresses'].append('6.6.6.6')
    assert store.snapshot_read(DNS_KEY_PATTERNS)[STATE_KEY] == {'ServerAddresses': ['9.9.9.9']}


def test_replace_drops_missing_keys():
    store = MemoryConfigStore({STATE_KEY: {'ServerAddresses': ['9.9.9.9']}})
    changed = store.replace({SETUP_KEY: {'ServerAddresses': ['1.1.1.1']}})
    assert sorted(changed) == sorted([STATE_KEY, SETUP_KEY])
    assert list(store.snapshot_read(DNS_KEY_PATTERNS)) == [SETUP_KEY]


def test_callback_failure_is_contained():
    store = MemoryConfigStore()
    calls = []

    def broken(keys):
        raise ValueError('boom')

    store.subscribe(DNS_KEY_PATTERNS, broken)
    store.subscribe(DNS_KEY_PATTERNS, calls.append)
    store.set(STATE_KEY, {'ServerAddresses': ['9.9.9.9']})
    assert calls == [[STATE_KEY]]


def test_read_resolv_conf(tmp_path):
    path = tmp_path / 'resolv.conf'
    path.write_text(
        "# generated\n"
        "domain home.example\n"
        "search corp.example lab.example\n"
        "nameserver 9.9.9.9\n"
        "nameserver 2620:fe::fe\n"
        "options edns0\n",
        encoding='utf-8',
    )
    entry = read_resolv_conf(str(path))
    assert entry == {
        'ServerAddresses': ['9.9.9.9', '2620:fe::fe'],
        'SearchDomains': ['corp.example', 'lab.example'],
        'DomainName': 'home.example',
    }


def test_read_resolv_conf_without_nameservers_keeps_search(tmp_path):
    path = tmp_path / 'resolv.conf'
    path.write_text("search corp.example\n", encoding='utf-8')
    assert read_resolv_conf(str(path)) == {'SearchDomains': ['corp.example']}


def test_read_resolv_conf_missing_file(tmp_path):
    assert read_resolv_conf(str(tmp_path / 'missing.conf')) is None


def test_setup_scope_values_skips_invalid_services():
    values = setup_scope_values({
        'office': {'ServerAddresses': ['10.0.0.53']},
        'bad/id': {'ServerAddresses': ['10.0.0.54']},
        '': {},
        'broken': 'nope',
    })
    assert values == {dns_key(SETUP_SCOPE, 'office'): {'ServerAddresses': ['10.0.0.53']}}


def test_resolv_conf_store_refresh_notifies(tmp_path):
    path = tmp_path / 'resolv.conf'
    path.write_text("nameserver 9.9.9.9\n", encoding='utf-8')
    store = ResolvConfStore(str(path), services={'office': {'SearchDomains': ['corp.example']}}, poll_interval=60)
    state_key = dns_key(STATE_SCOPE, RESOLV_CONF_SERVICE)
    try:
        raw = store.snapshot_read(DNS_KEY_PATTERNS)
        assert raw[state_key] == {'ServerAddresses': ['9.9.9.9']}
        assert raw[dns_key(SETUP_SCOPE, 'office')] == {'SearchDomains': ['corp.example']}

        calls = []
        sub = store.subscribe(DNS_KEY_PATTERNS, calls.append)
        assert store._poller is not None

        assert store.refresh() == []
        path.write_text("nameserver 1.1.1.1\n", encoding='utf-8')
        assert store.refresh() == [state_key]
        assert calls == [[state_key]]

        path.unlink()
        store.refresh()
        assert state_key not in store.snapshot_read(DNS_KEY_PATTERNS)

        store.unsubscribe(sub)
        assert store._poller is None
    finally:
        store.close()


def test_resolv_conf_store_set_services(tmp_path):
    store = ResolvConfStore(str(tmp_path / 'missing.conf'), poll_interval=60)
    try:
        assert store.snapshot_read(DNS_KEY_PATTERNS) == {}
        changed = store.set_services({'vpn': {'ServerAddresses': ['10.8.0.1']}})
        assert changed == [dns_key(SETUP_SCOPE, 'vpn')]
    finally:
        store.close()


def test_unsubscribe_waits_for_delivery_in_progress():
    store = MemoryConfigStore()
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow(keys):
        calls.append(keys)
        entered.set()
        release.wait(5)

    sub = store.subscribe(DNS_KEY_PATTERNS, slow)
    writer = threading.Thread(target=store.set, args=(STATE_KEY, {'ServerAddresses': ['9.9.9.9']}))
    writer.start()
    try:
        assert entered.wait(5)
        remover = threading.Thread(target=store.unsubscribe, args=(sub,))
        remover.start()
        remover.join(0.2)
        assert remover.is_alive()
    finally:
        release.set()
    writer.join(5)
    remover.join(5)
    assert not remover.is_alive()

    store.set(STATE_KEY, {'ServerAddresses': ['1.1.1.1']})
    assert calls == [[STATE_KEY]]


def test_callback_unsubscribing_another_handle_blocks_its_delivery():
    store = MemoryConfigStore()
    late = []
    handles = {}

    def first(keys):
        store.unsubscribe(handles['second'])

    handles['first'] = store.subscribe(DNS_KEY_PATTERNS, first)
    handles['second'] = store.subscribe(DNS_KEY_PATTERNS, late.append)
    store.set(STATE_KEY, {'ServerAddresses': ['9.9.9.9']})
    assert late == []


def test_resolv_conf_store_restart_reads_current_file(tmp_path):
    path = tmp_path / 'resolv.conf'
    path.write_text("nameserver 1.1.1.1\n", encoding='utf-8')
    store = ResolvConfStore(str(path), poll_interval=30)
    w = EvidenceWatcher(store)
    try:
        w.start()
        w.drain()
        assert w.current_snapshot().dns_servers == frozenset({'1.1.1.1'})
        w.stop()

        path.write_text("nameserver 9.9.9.9\n", encoding='utf-8')
        w.start()
        w.drain()
        assert w.current_snapshot().dns_servers == frozenset({'9.9.9.9'})
    finally:
        w.close()
        store.close()
