import pytest

from vantra.adapters import adapt_service_instance
from vantra.exceptions import CatalogCreationError, SyncError
from vantra.models.budget import PackageItem, SingleItem
from vantra.models.service import ServiceInstance
from vantra.services.budget_service import BudgetEditor, BudgetReconciler, explode_budget, plan_sync
from vantra.services.catalog_service import CatalogService


@pytest.fixture
def snapshot(seeded_api):
    return CatalogService(seeded_api).snapshot()


@pytest.fixture
def loaded(seeded_api):
    """Instances of cli-1 as the budget modal receives them."""
    return [adapt_service_instance(r) for r in seeded_api.services.list_for_client("cli-1")]


@pytest.fixture
def editor(loaded, snapshot):
    return BudgetEditor.from_instances(loaded, snapshot)


# ---------- editor ----------

def test_from_instances_groups_combo_members(snapshot):
    instances = [
        ServiceInstance(id="s1", name="IP Fija", unit_price=8000),
        ServiceInstance(id="s2", name="Internet Fibra 300Mb", unit_price=45000, origin_plan_id="combo-emp"),
        ServiceInstance(id="s3", name="Router WiFi 6", unit_price=12000, origin_plan_id="combo-emp"),
    ]
    ed = BudgetEditor.from_instances(instances, snapshot)
    single, pkg = ed.items
    assert isinstance(single, SingleItem) and single.remote_id == "s1"
    assert isinstance(pkg, PackageItem)
    assert pkg.name == "Pack Emprendedor"
    assert pkg.remote_ids == ["s2", "s3"]
    assert pkg.persisted


def test_add_catalog_item_takes_catalog_price(editor):
    item = editor.add_catalog_item("cat-fibra")
    assert item.price == 45000
    assert item.name == "Internet Fibra 300Mb"
    assert not item.persisted


def test_unknown_ids_raise_key_error(editor):
    with pytest.raises(KeyError):
        editor.add_catalog_item("nope")
    with pytest.raises(KeyError):
        editor.add_combo("nope")
    with pytest.raises(KeyError):
        editor.remove("nope")
    with pytest.raises(KeyError):
        editor.update_item("nope", price=1)


def test_add_combo_without_override_sums_members(editor):
    pkg = editor.add_combo("combo-emp")
    assert pkg.price is None
    assert pkg.total == 45000 + 12000
    assert [m.catalog_item_id for m in pkg.members] == ["cat-fibra", "cat-router"]


def test_package_override_price_wins(editor):
    pkg = editor.add_combo("combo-emp")
    updated = editor.update_item(pkg.key, price=50000)
    assert updated.total == 50000


def test_package_has_no_quantity(editor):
    pkg = editor.add_combo("combo-emp")
    with pytest.raises(ValueError):
        editor.update_item(pkg.key, quantity=2)


def test_totals(editor):
    editor.add_catalog_item("cat-install")
    editor.add_catalog_item("cat-fibra", quantity=2)
    assert editor.total() == 8000 + 20000 + 90000
    assert editor.recurring_total() == 8000 + 90000


def test_custom_item_requires_name(editor):
    with pytest.raises(ValueError):
        editor.add_custom_item("  ", 100)


def test_to_budget_keeps_tagged_rows(editor):
    editor.add_combo("combo-emp")
    budget = editor.to_budget("cli-1")
    dumped = budget.model_dump()
    assert [it["type"] for it in dumped["items"]] == ["single", "package"]
    assert type(budget.model_validate(dumped).items[1]) is PackageItem


# ---------- planning ----------

def test_plan_partitions_adds_and_deletes(loaded, editor):
    ip = editor.items[0]
    editor.remove(ip.key)
    single = editor.add_catalog_item("cat-fibra")
    custom = editor.add_custom_item("Soporte Premium", 5000)
    pkg = editor.add_combo("combo-emp")

    plan = plan_sync(loaded, editor.items)
    assert plan.deletes == ["srv-ip"]
    assert plan.new_singles == [single, custom]
    assert plan.custom_items == [custom]
    assert plan.new_packages == [pkg]
    assert plan.updates == []


def test_plan_never_deletes_and_recreates(loaded, editor):
    editor.add_catalog_item("cat-ip")
    plan = plan_sync(loaded, editor.items)
    recreated = {it.remote_id for it in plan.new_singles}
    assert not recreated & set(plan.deletes)
    assert plan.deletes == []


def test_plan_removing_package_deletes_all_members(snapshot):
    instances = [
        ServiceInstance(id="s2", origin_plan_id="combo-emp"),
        ServiceInstance(id="s3", origin_plan_id="combo-emp"),
    ]
    ed = BudgetEditor.from_instances(instances, snapshot)
    ed.remove(ed.items[0].key)
    assert plan_sync(instances, ed.items).deletes == ["s2", "s3"]


def test_plan_detects_edits_of_persisted_singles(loaded, editor):
    editor.update_item(editor.items[0].key, quantity=3)
    plan = plan_sync(loaded, editor.items)
    assert len(plan.updates) == 1
    instance, item = plan.updates[0]
    assert instance.id == "srv-ip"
    assert item.quantity == 3


def test_unchanged_budget_plans_nothing(loaded, editor):
    assert plan_sync(loaded, editor.items).is_empty


# ---------- saving ----------

def test_adding_catalog_item_assigns_once(seeded_api, loaded, editor):
    editor.add_catalog_item("cat-fibra")
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    assigns = seeded_api.calls_to("services.assign_to_client")
    assert len(assigns) == 1
    client_id, payload = assigns[0]
    assert client_id == "cli-1"
    assert payload["price"] == 45000
    assert payload["catalog_item_id"] == "cat-fibra"
    assert payload["origin_combo_id"] is None
    assert seeded_api.calls_to("services.remove") == []
    assert len(result.instances) == 2


def test_adding_combo_assigns_combo_and_server_explodes(seeded_api, loaded, editor):
    editor.add_combo("combo-emp")
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    assert seeded_api.calls_to("combos.assign_to_client") == [("cli-1", "combo-emp")]
    assert seeded_api.calls_to("services.assign_to_client") == []
    members = [i for i in result.instances if i.origin_plan_id == "combo-emp"]
    assert len(members) == 2


def test_removing_persisted_instance_removes_once(seeded_api, loaded, editor):
    editor.remove(editor.items[0].key)
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    assert seeded_api.calls_to("services.remove") == [("srv-ip",)]
    assert seeded_api.calls_to("services.assign_to_client") == []
    assert seeded_api.calls_to("combos.assign_to_client") == []
    assert seeded_api.calls_to("catalog.create") == []
    assert result.instances == []


def test_final_ids_are_previous_minus_deletes_plus_created(seeded_api, loaded, editor):
    editor.add_catalog_item("cat-install")
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)
    ids = {i.id for i in result.instances}
    assert "srv-ip" in ids
    assert len(ids) == 2


def test_custom_item_created_in_catalog_first(seeded_api, loaded, editor):
    custom = editor.add_custom_item("Soporte Premium", 5000, service_type="one_time")
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    created_id = result.created_catalog_ids[custom.key]
    assert created_id in seeded_api.catalog.records
    (_, payload), = seeded_api.calls_to("services.assign_to_client")
    assert payload["catalog_item_id"] == created_id
    assert payload["type"] == "one_time"
    order = [name for name, _ in seeded_api.calls]
    assert order.index("catalog.create") < order.index("services.assign_to_client")


def test_catalog_failure_aborts_before_any_assignment(seeded_api, loaded, editor):
    seeded_api.catalog.fail_on.add("Broken")
    editor.add_custom_item("Fine", 100)
    editor.add_custom_item("Broken", 200)
    editor.add_catalog_item("cat-fibra")

    with pytest.raises(CatalogCreationError) as exc:
        BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    assert seeded_api.calls_to("services.assign_to_client") == []
    # no rollback: the item that did get created stays
    assert list(exc.value.created.values())[0] in seeded_api.catalog.records


def test_updates_send_the_whole_instance(seeded_api, loaded, editor):
    editor.update_item(editor.items[0].key, price=9000)
    BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)

    (instance_id, body), = seeded_api.calls_to("services.update")
    assert instance_id == "srv-ip"
    assert body["unit_price"] == 9000
    assert body["client_id"] == "cli-1"
    assert body["catalog_item_id"] == "cat-ip"


def test_failed_removal_raises_sync_error(seeded_api, loaded, editor):
    seeded_api.services.fail_on_remove.add("srv-ip")
    editor.remove(editor.items[0].key)
    editor.add_catalog_item("cat-fibra")
    with pytest.raises(SyncError):
        BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)
    # earlier steps stay applied
    assert len(seeded_api.calls_to("services.assign_to_client")) == 1


def test_unchanged_budget_sends_nothing(seeded_api, loaded, editor):
    before = len(seeded_api.calls)
    result = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items)
    assert len(seeded_api.calls) == before
    assert result.instances == loaded


# ---------- explosion / bulk ----------

def test_explode_budget_flattens_packages(editor, snapshot):
    editor.add_combo("combo-emp")
    rows = explode_budget(editor.items, snapshot.items)
    assert [r["origin_plan_id"] for r in rows] == [None, "combo-emp", "combo-emp"]
    assert rows[0]["id"] == "srv-ip"


def test_explode_keeps_items_without_catalog_reference(snapshot, caplog):
    rows = explode_budget([SingleItem(name="Suelto", price=10)], snapshot.items)
    assert rows[0]["name"] == "Suelto"
    assert "no catalog reference" in caplog.text


def test_push_full_replaces_instances(seeded_api, editor):
    editor.remove(editor.items[0].key)
    editor.add_combo("combo-emp")
    custom = editor.add_custom_item("Soporte", 3000)

    result = BudgetReconciler(seeded_api).push_full("cli-1", editor.items)

    (client_id, rows), = seeded_api.calls_to("services.sync")
    assert client_id == "cli-1"
    assert len(rows) == 3
    assert rows[-1]["catalog_item_id"] == result.created_catalog_ids[custom.key]
    assert {i.origin_plan_id for i in result.instances} == {"combo-emp", None}
    assert "srv-ip" not in {i.id for i in result.instances}


def test_saved_package_cannot_be_repriced_or_renamed(seeded_api, loaded, editor):
    editor.add_combo("combo-emp")
    saved = BudgetReconciler(seeded_api).save("cli-1", loaded, editor.items).instances
    reloaded = BudgetEditor.from_instances(saved, CatalogService(seeded_api).snapshot())
    pkg = next(it for it in reloaded.items if isinstance(it, PackageItem))

    with pytest.raises(ValueError):
        reloaded.update_item(pkg.key, price=99999)
    with pytest.raises(ValueError):
        reloaded.update_item(pkg.key, name="Otro")
    assert pkg.total == 45000 + 12000
