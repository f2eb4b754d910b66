"""Tests for the contacts address-book backend."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from pm_carddav.carddav import (
    AddressBookQuery,
    AddressDataRequest,
    ConditionalMatch,
    PropFilter,
    ProtonCardDAVBackend,
    PutAddressObjectOptions,
    TextMatch,
    vcard,
)
from pm_carddav.errors import (
    APIError,
    NotFoundError,
    PreconditionFailedError,
    ProtocolInvariantError,
    UpstreamError,
)
from pm_carddav.protonmail import (
    CardType,
    Contact,
    Event,
    EventAction,
    EventContact,
    EventRefresh,
    EventStream,
)

PATH = "/contacts/default/abc.vcf"


@pytest.fixture
def backend(fake_client, keyring):
    return ProtonCardDAVBackend(fake_client, keyring)


@pytest.mark.asyncio
async def test_discovery(backend):
    """Test the principal, home set and address book."""
    request = Mock()

    assert await backend.current_user_principal(request) == "/"
    assert await backend.addressbook_home_set_path(request) == "/contacts"

    ab = await backend.get_addressbook(request)
    assert ab.path == "/contacts/default"
    assert ab.name == "ProtonMail"
    assert ab.max_resource_size == 100 * 1024


@pytest.mark.asyncio
async def test_get_miss_cold_cache(backend, fake_client, make_contact):
    """Test that a cold miss fetches the contact once and caches it."""
    fake_client.contacts["abc"] = make_contact("abc", modify_time=1700000000, size=512)
    request = Mock()

    obj = await backend.get_address_object(request, PATH)

    assert fake_client.calls == [("get_contact", "abc")]
    assert obj.path == PATH
    assert obj.etag == "6553f100200"
    assert obj.card.fn.value == "Ada Lovelace"

    await backend.get_address_object(request, PATH)
    assert fake_client.ops() == ["get_contact"], "Second get should hit the cache"


@pytest.mark.asyncio
async def test_get_miss_complete_cache(backend, fake_client, make_contact):
    """Test that a complete cache answers misses without upstream calls."""
    backend.cache.replace_all(
        {"a": make_contact("a"), "b": make_contact("b")},
        2,
    )

    with pytest.raises(NotFoundError):
        await backend.get_address_object(Mock(), "/contacts/default/xyz.vcf")

    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_get_foreign_path(backend, fake_client):
    """Test that paths outside the address book are not found."""
    with pytest.raises(NotFoundError):
        await backend.get_address_object(Mock(), "/contacts/other/abc.vcf")

    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_get_upstream_error(backend):
    """Test that upstream errors propagate."""
    with pytest.raises(APIError):
        await backend.get_address_object(Mock(), PATH)


@pytest.mark.asyncio
async def test_list_reconcile_then_cache(make_client, keyring, make_contact):
    """Test that the first list reconciles and the second uses the cache."""
    client = make_client(
        [make_contact("a"), make_contact("b", fn="Bob"), make_contact("c", fn="Cy")]
    )
    backend = ProtonCardDAVBackend(client, keyring)
    request = Mock()

    objects = await backend.list_address_objects(request)

    assert sorted(obj.path for obj in objects) == [
        "/contacts/default/a.vcf",
        "/contacts/default/b.vcf",
        "/contacts/default/c.vcf",
    ]
    assert client.calls == [
        ("list_contacts", 0, 0),
        ("list_contacts_export", 0, 0),
        ("list_contacts_export", 1, 0),
    ]
    assert backend.cache.complete()

    client.calls.clear()
    again = await backend.list_address_objects(request)

    assert len(again) == 3
    assert client.calls == [], "Second list should not reach upstream"


@pytest.mark.asyncio
async def test_list_keeps_metadata(make_client, keyring, make_contact):
    """Test that listed objects carry the metadata ETag, not the export's."""
    client = make_client([make_contact("a", modify_time=16, size=1)])
    backend = ProtonCardDAVBackend(client, keyring)

    objects = await backend.list_address_objects(Mock())

    assert objects[0].etag == "101"


@pytest.mark.asyncio
async def test_list_drops_unexported_ids(make_client, keyring, make_contact):
    """Test that contacts missing from the export are left out."""
    client = make_client([make_contact("a"), make_contact("b")])
    real_export = client.list_contacts_export

    async def export_without_b(page, page_size=0):
        total, contacts = await real_export(page, page_size)
        return total, [c for c in contacts if c.id != "b"]

    client.list_contacts_export = export_without_b
    backend = ProtonCardDAVBackend(client, keyring)

    objects = await backend.list_address_objects(Mock())

    assert [obj.path for obj in objects] == ["/contacts/default/a.vcf"]
    assert not backend.cache.complete()


@pytest.mark.asyncio
async def test_list_evicts_vanished_contacts(make_client, keyring, make_contact):
    """Test that reconciliation drops cached contacts gone upstream."""
    client = make_client([make_contact("a")])
    backend = ProtonCardDAVBackend(client, keyring)
    backend.cache.put(make_contact("gone"))

    await backend.list_address_objects(Mock())

    assert backend.cache.get("gone") is None
    assert backend.cache.complete()


@pytest.mark.asyncio
async def test_list_with_data_request(make_client, keyring, make_contact):
    """Test that the data request prunes listed cards."""
    client = make_client([make_contact("a", note="hi")])
    backend = ProtonCardDAVBackend(client, keyring)

    objects = await backend.list_address_objects(Mock(), AddressDataRequest(props=["NOTE"]))

    assert sorted(vcard.property_names(objects[0].card)) == ["NOTE", "VERSION"]


@pytest.mark.asyncio
async def test_query(make_client, keyring, make_contact):
    """Test filtering, limit and property selection of a query."""
    client = make_client(
        [
            make_contact("a", fn="Ada Lovelace"),
            make_contact("b", fn="Bob Smith", email="bob@example.com"),
            make_contact("c", fn="Ada Byron", email="byron@example.com"),
        ]
    )
    backend = ProtonCardDAVBackend(client, keyring)
    query = AddressBookQuery(
        data_request=AddressDataRequest(props=["EMAIL"]),
        prop_filters=[PropFilter(name="FN", text_matches=[TextMatch(text="ada")])],
    )

    matched = await backend.query_address_objects(Mock(), query)

    assert sorted(obj.path for obj in matched) == [
        "/contacts/default/a.vcf",
        "/contacts/default/c.vcf",
    ]
    for obj in matched:
        assert sorted(vcard.property_names(obj.card)) == ["EMAIL", "VERSION"]

    query.limit = 1
    assert len(await backend.query_address_objects(Mock(), query)) == 1


@pytest.mark.asyncio
async def test_put_create(backend, fake_client, make_vcard):
    """Test creating a contact from a client vCard."""
    card = vcard.decode(make_vcard(fn="Ada", email="a@x"))

    path = await backend.put_address_object(Mock(), PATH, card)

    assert path == "/contacts/default/new-1.vcf"
    assert fake_client.ops() == ["get_contact", "create_contacts"]

    imports = fake_client.calls[1][1]
    assert len(imports) == 1
    assert [c.type for c in imports[0].cards] == [CardType.SIGNED, CardType.ENCRYPTED_SIGNED]
    assert "FN:Ada" in imports[0].cards[0].data

    cached = backend.cache.get("new-1")
    assert cached is not None
    assert cached.cards == imports[0].cards, "Cached contact should carry the import's cards"

    obj = await backend.get_address_object(Mock(), path)
    assert obj.card.fn.value == "Ada"
    assert fake_client.ops() == ["get_contact", "create_contacts"]


@pytest.mark.asyncio
async def test_put_update(backend, fake_client, make_contact, make_vcard):
    """Test updating an existing contact."""
    fake_client.contacts["abc"] = make_contact("abc")
    card = vcard.decode(make_vcard(fn="Ada King"))

    path = await backend.put_address_object(Mock(), PATH, card)

    assert path == PATH
    assert fake_client.ops() == ["get_contact", "update_contact"]
    obj = await backend.get_address_object(Mock(), PATH)
    assert obj.card.fn.value == "Ada King"


@pytest.mark.asyncio
async def test_put_if_none_match_existing(backend, fake_client, make_contact, make_vcard):
    """Test that If-None-Match: * refuses to overwrite."""
    fake_client.contacts["abc"] = make_contact("abc")
    opts = PutAddressObjectOptions(if_none_match=ConditionalMatch("*"))

    with pytest.raises(PreconditionFailedError) as excinfo:
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()), opts)

    assert excinfo.value.code == 412
    assert "update_contact" not in fake_client.ops()


@pytest.mark.asyncio
async def test_put_if_match(backend, fake_client, make_contact, make_vcard):
    """Test If-Match against the current ETag."""
    fake_client.contacts["abc"] = make_contact("abc", modify_time=16, size=1)
    card = vcard.decode(make_vcard())

    with pytest.raises(PreconditionFailedError):
        await backend.put_address_object(
            Mock(), PATH, card, PutAddressObjectOptions(if_match=ConditionalMatch('"nope"'))
        )

    await backend.put_address_object(
        Mock(), PATH, card, PutAddressObjectOptions(if_match=ConditionalMatch('"101"'))
    )
    assert "update_contact" in fake_client.ops()


@pytest.mark.asyncio
async def test_put_if_match_missing(backend, fake_client, make_vcard):
    """Test that If-Match fails when there is nothing to match."""
    opts = PutAddressObjectOptions(if_match=ConditionalMatch("*"))

    with pytest.raises(PreconditionFailedError):
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()), opts)

    assert "create_contacts" not in fake_client.ops()


@pytest.mark.asyncio
async def test_put_lookup_failure_does_not_create(backend, fake_client, make_contact, make_vcard):
    """Test that a failed existence lookup is raised instead of creating a duplicate."""
    fake_client.contacts["abc"] = make_contact("abc")

    async def get_contact(contact_id):
        fake_client.calls.append(("get_contact", contact_id))
        raise UpstreamError("get_contact: ReadTimeout")

    fake_client.get_contact = get_contact

    with pytest.raises(UpstreamError):
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()))

    assert fake_client.ops() == ["get_contact"]
    assert list(fake_client.contacts) == ["abc"]


@pytest.mark.asyncio
async def test_put_lookup_api_error_does_not_create(backend, fake_client, make_vcard):
    """Test that only a "does not exist" answer lets a PUT create."""

    async def get_contact(contact_id):
        fake_client.calls.append(("get_contact", contact_id))
        raise APIError("get_contact", 2028, "Too many requests")

    fake_client.get_contact = get_contact

    with pytest.raises(APIError) as excinfo:
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()))

    assert excinfo.value.code == 2028
    assert "create_contacts" not in fake_client.ops()


@pytest.mark.asyncio
async def test_put_create_error(backend, fake_client, make_vcard):
    """Test that a per-contact create error is raised."""
    fake_client.create_code = 2000

    with pytest.raises(APIError) as excinfo:
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()))

    assert excinfo.value.code == 2000
    assert len(backend.cache) == 0


@pytest.mark.asyncio
async def test_put_create_extra_responses(backend, fake_client, make_vcard):
    """Test that anything but one create response is a protocol error."""
    fake_client.extra_responses = 1

    with pytest.raises(ProtocolInvariantError):
        await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard()))


@pytest.mark.asyncio
async def test_delete(backend, fake_client, make_contact):
    """Test deleting a cached contact."""
    fake_client.contacts["abc"] = make_contact("abc")
    await backend.get_address_object(Mock(), PATH)

    await backend.delete_address_object(Mock(), PATH)

    assert fake_client.calls[-1] == ("delete_contacts", ["abc"])
    assert backend.cache.get("abc") is None


@pytest.mark.asyncio
async def test_delete_error(backend, fake_client, make_contact):
    """Test that a per-contact delete error is raised."""
    fake_client.contacts["abc"] = make_contact("abc")
    fake_client.delete_code = 2501

    with pytest.raises(APIError):
        await backend.delete_address_object(Mock(), PATH)


@pytest.mark.asyncio
async def test_delete_extra_responses(backend, fake_client):
    """Test that anything but one delete response is a protocol error."""
    fake_client.extra_responses = 1

    with pytest.raises(ProtocolInvariantError):
        await backend.delete_address_object(Mock(), PATH)


@pytest.mark.asyncio
async def test_total_tracks_writes_without_events(make_client, keyring, make_contact, make_vcard):
    """Test that without events the backend keeps a complete cache complete."""
    client = make_client([make_contact("a")])
    backend = ProtonCardDAVBackend(client, keyring)
    await backend.list_address_objects(Mock())

    path = await backend.put_address_object(
        Mock(), "/contacts/default/b.vcf", vcard.decode(make_vcard(fn="B"))
    )
    assert backend.cache.total == 2
    assert backend.cache.complete()

    await backend.delete_address_object(Mock(), path)
    assert backend.cache.total == 1
    assert backend.cache.complete()


@pytest.mark.asyncio
async def test_put_create_then_event_echo(fake_client, keyring, make_vcard):
    """Test that only the event adjusts the total when events are attached."""
    backend = ProtonCardDAVBackend(fake_client, keyring, events=EventStream())
    await backend.list_address_objects(Mock())
    assert backend.cache.total == 0

    path = await backend.put_address_object(Mock(), PATH, vcard.decode(make_vcard(fn="Ada")))
    assert backend.cache.total == 0
    assert fake_client.ops().count("get_contact") == 0, "Complete cache answers the probe"

    created = fake_client.contacts["new-1"]
    backend.applier.apply(
        Event(contacts=[EventContact(EventAction.CREATE, created.id, created)])
    )

    assert backend.cache.total == 1
    assert backend.cache.complete()
    assert path == "/contacts/default/new-1.vcf"


@pytest.mark.asyncio
async def test_refresh_event_empties_cache(make_client, keyring, make_contact):
    """Test that a contacts refresh drops the cache and its updates."""
    backend = ProtonCardDAVBackend(make_client(), keyring, events=EventStream())
    backend.cache.replace_all({"a": make_contact("a")}, 1)

    backend.applier.apply(
        Event(
            refresh=EventRefresh.CONTACTS,
            contacts=[
                EventContact(EventAction.UPDATE, "a", make_contact("a")),
                EventContact(EventAction.UPDATE, "b", make_contact("b")),
                EventContact(EventAction.CREATE, "c", make_contact("c")),
            ],
        )
    )

    assert len(backend.cache) == 0
    assert backend.cache.total == -1


def test_delete_during_list(make_client, keyring, make_contact):
    """Test that a list sees a delete either entirely or not at all."""
    contacts = [make_contact(name) for name in ("a", "b", "c", "d")]
    client = make_client(contacts)
    backend = ProtonCardDAVBackend(client, keyring)
    backend.cache.replace_all({c.id: c for c in contacts}, len(contacts))

    results = []
    errors = []

    def lister():
        try:
            results.append(asyncio.run(backend.list_address_objects(Mock())))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    def deleter():
        try:
            asyncio.run(backend.delete_address_object(Mock(), "/contacts/default/b.vcf"))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=lister), threading.Thread(target=deleter)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert not errors
    paths = sorted(obj.path for obj in results[0])
    assert paths in (
        [f"/contacts/default/{c}.vcf" for c in ("a", "b", "c", "d")],
        [f"/contacts/default/{c}.vcf" for c in ("a", "c", "d")],
    )


@pytest.mark.asyncio
async def test_start_and_aclose(fake_client, keyring):
    """Test that the backend runs the applier for its stream and closes the client."""
    stream = EventStream()
    backend = ProtonCardDAVBackend(fake_client, keyring, events=stream)
    backend.cache.set_total(0)

    await backend.start()
    stream.send(Event(contacts=[EventContact(EventAction.CREATE, "a", Contact(id="a"))]))
    for _ in range(10):
        await asyncio.sleep(0)
        if backend.cache.get("a") is not None:
            break

    assert backend.cache.get("a") is not None
    await backend.aclose()
    assert fake_client.closed
