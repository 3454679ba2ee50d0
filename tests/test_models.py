import datetime as dt
import threading
from planner.collection import TaskCollection
from planner.instances import OverrideIndex, reconcile_template
from planner.models import InstanceRef, TaskKind, classify
from conftest import make_task, make_template


def test_classification(template):
    virtual = reconcile_template(template, OverrideIndex())[0]
    assert classify(template) is TaskKind.TEMPLATE
    assert classify(virtual) is TaskKind.VIRTUAL
    assert classify(make_task(parent_task_id="tmpl-gym", type="routine")) is TaskKind.OVERRIDE
    assert classify(make_task(parent_task_id="tmpl-gym", type="related")) is TaskKind.PLAIN
    assert classify(make_task()) is TaskKind.PLAIN


def test_override_with_date_like_id_is_still_an_override():
    # identity comes from instance_ref, not from the shape of the id
    row = make_task(id="abc_2026-02-02", parent_task_id="tmpl-gym", type="routine")
    assert row.kind is TaskKind.OVERRIDE


def test_instance_ref_parse():
    ref = InstanceRef.parse("0b7c-uuid_2026-02-09")
    assert ref == InstanceRef("0b7c-uuid", dt.date(2026, 2, 9))
    assert ref.task_id == "0b7c-uuid_2026-02-09"
    assert InstanceRef.parse("plain-1") is None
    assert InstanceRef.parse("x_2026-02-31") is None


def test_copy_does_not_share_date_sets(template):
    clone = template.copy()
    clone.completed_dates.add("2026-02-02")
    assert template.completed_dates == set()


def test_collection_keeps_one_record_per_slot(template):
    coll = TaskCollection()
    virtual = reconcile_template(template, OverrideIndex())[0]
    coll.reset([template], [virtual])
    override = make_task(id="ovr-1", type="routine", due_date=virtual.due_date, parent_task_id="tmpl-gym")
    coll.put(override)
    assert virtual.id not in coll
    assert coll.occurrence("tmpl-gym", "2026-02-02") is override
    before = coll.capture(["ovr-1"])
    coll.remove("ovr-1")
    coll.revert(before, coll.capture(["ovr-1"]))
    assert coll.occurrence("tmpl-gym", "2026-02-02").id == "ovr-1"
    assert len(coll) == 1


def test_revert_only_undoes_its_own_change(template):
    coll = TaskCollection()
    coll.reset([template], [])
    before = coll.capture(["tmpl-gym"])
    coll.put(template.copy(completed_dates={"2026-02-04"}, notes="legs and core"))
    after = coll.capture(["tmpl-gym"])
    # a later edit lands before the first one is reverted
    later = coll.template("tmpl-gym")
    coll.put(later.copy(completed_dates=later.completed_dates | {"2026-02-09"}, title="Gym (morning)"))
    coll.revert(before, after)
    current = coll.template("tmpl-gym")
    assert current.completed_dates == {"2026-02-09"}
    assert (current.title, current.notes) == ("Gym (morning)", "legs")


def test_parked_override_is_hidden_until_put(template):
    coll = TaskCollection()
    late = make_task(id="ovr-late", type="routine", due_date=dt.date(2026, 2, 16), parent_task_id="tmpl-gym")
    coll.reset([template], reconcile_template(template, OverrideIndex()), [late])
    assert "ovr-late" not in coll
    assert all(t.id != "ovr-late" for t in coll.tasks())
    assert coll.parked_overrides("tmpl-gym") == [late]
    coll.put(late)
    assert coll.parked_overrides("tmpl-gym") == []
    assert coll.occurrence("tmpl-gym", "2026-02-16") is late


def test_template_lookup_waits_for_the_lock(template):
    coll = TaskCollection()
    coll.reset([template], [])
    seen = []
    reader = threading.Thread(target=lambda: seen.append(coll.template("tmpl-gym")))
    with coll.lock:
        reader.start()
        reader.join(0.2)
        assert seen == []
    reader.join(5)
    assert seen == [template]
