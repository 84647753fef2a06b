# Overview: Thread-based concurrency tests for order transitions and PFI capacity.

"""
Concurrency tests for fuelops.

Runs against a temp-file SQLite database so every thread gets its own
connection. Run with pytest, or directly:
    python -m pytest tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from fuelops import create_app
from fuelops.extensions import db
from fuelops.models import Location, Order, OrderAuditEvent, Pfi, Product, User
from fuelops.services import audit_service, concurrency, order_service, pfi_service
from fuelops.validation import CapacityExceededError, ConflictError


RELEASE_DETAILS = {
    "truck_number": "KJA-555AA",
    "driver_name": "Chidi Okeke",
    "driver_phone": "08050000000",
}


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            location = Location(name="Concurrency Depot", code="CON")
            db.session.add(location)
            db.session.commit()
            self.location_id = location.id

            product = Product(name="Premium Motor Spirit", abbreviation="PMS", unit_price_kobo=61700)
            db.session.add(product)
            db.session.commit()
            self.product_id = product.id

            user = User(username="concurrent_user", email="concurrent@example.com", role="admin", location_id=self.location_id)
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id

            # First order also creates the reference sequence row
            self._create_order(1000)

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _create_order(self, quantity):
        order = order_service.create_order(
            location_id=self.location_id,
            lines=[{"product_id": self.product_id, "quantity": quantity}],
            actor_user_id=self.user_id,
        )
        return order.id

    def _paid_order(self, quantity):
        return self._paid_order_at(self.location_id, quantity)

    def _paid_order_at(self, location_id, quantity):
        with self.app.app_context():
            order_id = order_service.create_order(
                location_id=location_id,
                lines=[{"product_id": self.product_id, "quantity": quantity}],
                actor_user_id=self.user_id,
            ).id
            order_service.confirm_payment(order_id, actor_user_id=self.user_id)
            return order_id

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_payment_single_winner(self):
        with self.app.app_context():
            order_id = self._create_order(5000)

        successes = []
        conflicts = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    order_service.confirm_payment(order_id, actor_user_id=self.user_id)
                    with lock:
                        successes.append(order_id)
                except ConflictError as exc:
                    with lock:
                        conflicts.append(exc.current_status)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 8)

        self.assertFalse(errors)
        self.assertEqual(len(successes), 1)
        self.assertEqual(conflicts, ["paid"] * 7)

        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).status, "paid")
            self.assertEqual(
                audit_service.count_events(order_id, audit_service.ACTION_PAYMENT_CONFIRMATION), 1
            )

    def test_concurrent_releases_never_oversell(self):
        with self.app.app_context():
            pfi = pfi_service.create_pfi(
                pfi_number="PFI-RACE",
                location_id=self.location_id,
                product_id=self.product_id,
                starting_qty_litres=10000,
                actor_user_id=self.user_id,
            )
            pfi_id = pfi.id

        order_ids = [self._paid_order(3000) for _ in range(6)]

        released = []
        rejected = []
        errors = []
        lock = threading.Lock()

        def worker(order_id):
            with self.app.app_context():
                try:
                    order_service.release_order(
                        order_id,
                        actor_user_id=self.user_id,
                        details=dict(RELEASE_DETAILS),
                        pfi_id=pfi_id,
                    )
                    with lock:
                        released.append(order_id)
                except CapacityExceededError:
                    with lock:
                        rejected.append(order_id)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([lambda oid=oid: worker(oid) for oid in order_ids])

        self.assertFalse(errors)
        self.assertEqual(len(released), 3)
        self.assertEqual(len(rejected), 3)

        with self.app.app_context():
            totals = pfi_service.compute_totals(pfi_id)
            self.assertEqual(totals.sold_qty_litres, 9000)
            self.assertEqual(totals.remaining_qty_litres, 1000)
            for order_id in rejected:
                order = db.session.get(Order, order_id)
                self.assertEqual(order.status, "paid")
                self.assertIsNone(order.pfi_id)

    def test_concurrent_truck_exit_single_event(self):
        order_id = self._paid_order(2000)
        with self.app.app_context():
            order_service.release_order(order_id, actor_user_id=self.user_id, details=dict(RELEASE_DETAILS))

        outcomes = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    order_service.confirm_truck_exit(order_id, actor_user_id=self.user_id)
                    result = "ok"
                except ConflictError as exc:
                    result = exc.code
                except Exception as exc:
                    result = exc
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(result)

        self._run_threads([worker] * 5)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("order_already_exited"), 4)

        with self.app.app_context():
            count = (
                db.session.query(OrderAuditEvent)
                .filter_by(order_id=order_id, action=audit_service.ACTION_TRUCK_EXIT)
                .count()
            )
            self.assertEqual(count, 1)

    def _pfi(self, number, starting_qty, location_id=None):
        with self.app.app_context():
            return pfi_service.create_pfi(
                pfi_number=number,
                location_id=location_id or self.location_id,
                product_id=self.product_id,
                starting_qty_litres=starting_qty,
                actor_user_id=self.user_id,
            ).id

    def _second_location(self):
        with self.app.app_context():
            location = Location(name="Second Depot", code="SEC")
            db.session.add(location)
            db.session.commit()
            return location.id

    def test_finish_racing_releases(self):
        pfi_id = self._pfi("PFI-FIN", 10000)
        order_ids = [self._paid_order(1000) for _ in range(5)]

        outcomes = {}
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(order_ids) + 1)

        def release(order_id):
            with self.app.app_context():
                try:
                    barrier.wait()
                    order_service.release_order(
                        order_id, actor_user_id=self.user_id, details=dict(RELEASE_DETAILS), pfi_id=pfi_id,
                    )
                    result = "released"
                except ConflictError as exc:
                    result = exc.code
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                    return
                finally:
                    db.session.remove()
                with lock:
                    outcomes[order_id] = result

        def finish():
            with self.app.app_context():
                try:
                    barrier.wait()
                    pfi_service.finish_pfi(pfi_id, actor_user_id=self.user_id)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        targets = [lambda oid=oid: release(oid) for oid in order_ids] + [finish]
        self._run_threads(targets)

        self.assertFalse(errors)
        self.assertEqual(len(outcomes), 5)
        self.assertTrue(set(outcomes.values()) <= {"released", "pfi_not_active"})

        released = [oid for oid, result in outcomes.items() if result == "released"]
        with self.app.app_context():
            pfi = db.session.get(Pfi, pfi_id)
            self.assertEqual(pfi.status, "finished")
            self.assertEqual(pfi_service.compute_totals(pfi_id).sold_qty_litres, 1000 * len(released))
            for order_id, result in outcomes.items():
                order = db.session.get(Order, order_id)
                if result == "released":
                    self.assertEqual(order.status, "released")
                    self.assertEqual(order.pfi_id, pfi_id)
                    self.assertLessEqual(order.released_at, pfi.finished_at)
                else:
                    self.assertEqual(order.status, "paid")
                    self.assertIsNone(order.pfi_id)

    def test_assignment_racing_releases_never_oversells(self):
        pfi_id = self._pfi("PFI-MIX", 3000)

        assign_ids = []
        for _ in range(2):
            order_id = self._paid_order(1000)
            with self.app.app_context():
                order_service.release_order(order_id, actor_user_id=self.user_id, details=dict(RELEASE_DETAILS))
            assign_ids.append(order_id)
        release_ids = [self._paid_order(1000) for _ in range(2)]

        outcomes = {}
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(release_ids) + 1)

        def record(key, result):
            with lock:
                outcomes[key] = result

        def release(order_id):
            with self.app.app_context():
                try:
                    barrier.wait()
                    order_service.release_order(
                        order_id, actor_user_id=self.user_id, details=dict(RELEASE_DETAILS), pfi_id=pfi_id,
                    )
                    record(order_id, "ok")
                except CapacityExceededError:
                    record(order_id, "capacity")
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        def assign():
            with self.app.app_context():
                try:
                    barrier.wait()
                    result = order_service.assign_orders_to_pfi(assign_ids, pfi_id, actor_user_id=self.user_id)
                    record("assign", "ok" if result["assigned"] == assign_ids else "partial")
                except CapacityExceededError:
                    record("assign", "capacity")
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([lambda oid=oid: release(oid) for oid in release_ids] + [assign])

        self.assertFalse(errors)
        self.assertTrue(set(outcomes.values()) <= {"ok", "capacity"})

        expected_sold = sum(1000 for oid in release_ids if outcomes[oid] == "ok")
        if outcomes["assign"] == "ok":
            expected_sold += 2000

        with self.app.app_context():
            totals = pfi_service.compute_totals(pfi_id)
            self.assertEqual(totals.sold_qty_litres, expected_sold)
            self.assertLessEqual(totals.sold_qty_litres, 3000)
            # Any serial order of the three requests fits at least 2000 litres
            self.assertGreaterEqual(totals.sold_qty_litres, 2000)

    def test_different_pfis_do_not_block_each_other(self):
        other_location_id = self._second_location()
        held_pfi_id = self._pfi("PFI-HELD", 10000)
        free_pfi_id = self._pfi("PFI-FREE", 10000, location_id=other_location_id)

        free_order_id = self._paid_order_at(other_location_id, 1000)
        held_order_id = self._paid_order(1000)

        results = {}

        def release(order_id, pfi_id):
            with self.app.app_context():
                try:
                    order_service.release_order(
                        order_id, actor_user_id=self.user_id, details=dict(RELEASE_DETAILS), pfi_id=pfi_id,
                    )
                    results[order_id] = "ok"
                except Exception as exc:
                    results[order_id] = exc
                finally:
                    db.session.remove()

        with concurrency.keyed_lock("pfi", held_pfi_id):
            free_worker = threading.Thread(target=release, args=(free_order_id, free_pfi_id))
            held_worker = threading.Thread(target=release, args=(held_order_id, held_pfi_id))
            free_worker.start()
            held_worker.start()

            free_worker.join(timeout=10)
            self.assertFalse(free_worker.is_alive())
            self.assertEqual(results.get(free_order_id), "ok")

            held_worker.join(timeout=0.5)
            self.assertTrue(held_worker.is_alive())

        held_worker.join(timeout=10)
        self.assertFalse(held_worker.is_alive())
        self.assertEqual(results.get(held_order_id), "ok")

    def test_cancel_racing_payment_single_winner(self):
        for _ in range(5):
            with self.app.app_context():
                order_id = self._create_order(1000)

            outcomes = []
            lock = threading.Lock()
            barrier = threading.Barrier(2)

            def run(action):
                with self.app.app_context():
                    try:
                        barrier.wait()
                        action(order_id, actor_user_id=self.user_id)
                        result = ("ok", None)
                    except ConflictError as exc:
                        result = ("conflict", exc.current_status)
                    except Exception as exc:
                        result = ("error", exc)
                    finally:
                        db.session.remove()
                    with lock:
                        outcomes.append(result)

            self._run_threads([
                lambda: run(order_service.confirm_payment),
                lambda: run(order_service.cancel_order),
            ])

            self.assertEqual(sorted(kind for kind, _ in outcomes), ["conflict", "ok"])
            with self.app.app_context():
                order = db.session.get(Order, order_id)
                self.assertIn(order.status, {"paid", "canceled"})
                conflict_status = [status for kind, status in outcomes if kind == "conflict"][0]
                self.assertEqual(conflict_status, order.status)
                self.assertEqual(audit_service.count_events(order_id), 1)

    def test_order_references_are_unique(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    order_id = self._create_order(1000)
                    reference = db.session.get(Order, order_id).reference
                    with lock:
                        created.append(reference)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 10)

        self.assertFalse(errors)
        self.assertEqual(len(created), 10)
        self.assertEqual(len(created), len(set(created)))


if __name__ == "__main__":
    unittest.main()
