import itertools as it, operator as op, functools as ft
import unittest, io

from . import _common as c

tr = c.tn.t.records
trel = c.tn.t.relations
attr = c.tn.u.attr


class RelationIndexTests(unittest.TestCase):

	def setUp(self):
		self.fixture = c.NetworkFixture()
		self.builder = self.fixture.builder()

	def rebuilt(self, rel):
		return trel.RelationIndex(rel.name, rel.source, rel.ref)

	def trip(self, trip_id, *stops, route_id='B42F'):
		return tr.Trip( trip_id, route_id, 'Week', 'Bus', 'TGD', 'TGC',
			stop_times=list(tr.StopTime(s, n, n * 60, n * 60) for n, s in enumerate(stops)) )

	def test_related_to(self):
		rel = self.builder.relation('trips.stop_times')
		self.assertEqual(rel.related_to('RERAF1'), ['NATR', 'GDLR', 'DEFR'])
		self.assertEqual(rel.related_to('missing'), list())
		self.assertEqual(rel.referencing('NATR'), ['RERAF1', 'RERAB1'])
		self.assertEqual(rel.referencing('missing'), list())
		rel = self.builder.relation('stop_points.stop_area_id')
		self.assertEqual(rel.referencing('GDL'), ['GDLR', 'GDLM', 'GDLB'])
		with self.assertRaises(KeyError): self.builder.relation('trips.headsign')

	def test_incremental_equals_rebuild(self):
		names = [ 'trips.stop_times', 'trips.route_id', 'stop_points.stop_area_id',
			'networks.comment_links', 'transfers.from_stop_id', 'transfers.to_stop_id' ]
		rels = list(map(self.builder.relation, names))
		trips, stop_points = self.builder.trips, self.builder.stop_points
		transfers = self.builder.transfers

		trips.insert(self.trip('B42F2', 'GDLB', 'NATM', 'GDLB', 'CDGR'))
		trips.insert(self.trip('B42F3', 'CDGR'))
		trips.remove('RERAF1')
		trips.update('M1F1', lambda trip: attr.evolve(trip, stop_times=trip.stop_times[::-1]))
		trips.update('B42F3', route_id='M1F')
		trips.retain(lambda trip: trip.id != 'B42F1')
		stop_points.insert(tr.StopPoint('NATB', 'Nation Bus', 'NAT'))
		stop_points.update('GDLB', stop_area_id='NAT')
		stop_points.remove('DEFR')
		self.builder.networks.update( 'TGN',
			lambda net: attr.evolve(net, comment_links=net.comment_links + ('C2',)) )
		self.assertEqual(transfers.push(tr.Transfer('GDLB', 'GDLM', 60)), 2)
		transfers.remove_index(0)
		transfers.update_index(1, to_stop_id='GDLB')

		for rel in rels: self.assertEqual(rel, self.rebuilt(rel), rel.name)
		rel_st, rel_route, rel_sa, rel_cl, rel_from, rel_to = rels
		self.assertEqual(rel_st.related_to('B42F2'), ['GDLB', 'NATM', 'CDGR'])
		self.assertEqual(rel_st.referencing('CDGR'), ['RERAB1', 'B42F2', 'B42F3'])
		self.assertEqual(rel_st.related_to('RERAF1'), list())
		self.assertNotIn('DEFR', rel_st.reverse)
		self.assertEqual(rel_route.referencing('M1F'), ['M1F1', 'B42F3'])
		self.assertEqual(rel_sa.referencing('NAT'), ['GDLB', 'NATR', 'NATM', 'NATB'])
		self.assertEqual(rel_cl.related_to('TGN'), ['C1', 'C2'])
		self.assertEqual(rel_from.related_to(0), list())
		self.assertEqual(rel_from.related_to(2), ['GDLB'])
		self.assertEqual(rel_from.referencing('GDLB'), [2])
		self.assertEqual(rel_to.referencing('GDLB'), [1])
		self.assertEqual(rel_to.referencing('GDLM'), [2])

	def test_rebuild(self):
		rel = self.builder.relation('lines.network_id')
		rel.forward.clear()
		rel.rebuild()
		self.assertEqual(rel.referencing('TGN'), ['M1', 'RERA', 'B42'])
		self.assertEqual(rel, self.rebuilt(rel))

	def test_model_relations(self):
		model = self.fixture.model()
		for rel in model.relations(): self.assertEqual(rel, self.rebuilt(rel), rel.name)
		self.assertEqual(
			set(rel.name for rel in model.relations()),
			set(name for name, kind, ref in trel.relation_specs()) )
		self.assertEqual(model.referencing('routes.line_id', 'RERA'), ['RERAF', 'RERAB'])
		self.assertEqual(model.related_to('trips.calendar_id', 'RERAB1'), ['Weekend'])
		self.assertEqual(model.referencing('transfers.from_stop_id', 'NATM'), [1])
		self.assertEqual(model.related_to('frequencies.trip_id', 0), ['M1F1'])
		with self.assertRaises(KeyError): model.relation('ticket_use_perimeters.object_id')

	def test_parallel_relations(self):
		builder = self.fixture.builder()
		builder.conf.relation_workers = 4
		model = builder.validate()
		for rel in model.relations(): self.assertEqual(rel, self.rebuilt(rel), rel.name)


class RelationGraphTests(unittest.TestCase):

	def test_kind_path(self):
		self.assertEqual(trel.kind_path('lines', 'lines'), tuple())
		path = trel.kind_path('stop_areas', 'physical_modes')
		self.assertIsInstance(path, tuple)
		self.assertEqual(
			list((edge.relation, edge.forward) for edge in path),
			[ ('stop_points.stop_area_id', False),
				('trips.stop_times', False), ('trips.physical_mode_id', True) ] )
		path = trel.kind_path('lines', 'stop_areas')
		self.assertEqual(list(edge.dst for edge in path), ['routes', 'trips', 'stop_points', 'stop_areas'])
		self.assertIsNone(trel.kind_path('lines', 'frequencies'))

	def test_corresponding(self):
		fixture = c.NetworkFixture()
		model = fixture.model()
		for check in fixture.corresponding_checks:
			self.assertEqual(
				model.corresponding(check.from_kind, check.ids, check.to_kind),
				check.result, check )
		with self.assertRaises(c.tn.StoreError):
			model.corresponding('lines', ['M1'], 'ticket_prices')

	def test_corresponding_while_building(self):
		builder = c.tn.Collections()
		builder.routes.insert(tr.Route('R2', 'Route', 'L1'))
		for trip_id, route_id in ('T1', 'R1'), ('T2', 'R2'):
			builder.trips.insert(tr.Trip(trip_id, route_id, 'C', 'P', 'D', 'O'))
		self.assertEqual(builder.corresponding('trips', ['T1', 'T2'], 'routes'), ['R2'])
		self.assertEqual(builder.corresponding('routes', ['R2', 'R1'], 'lines'), list())
		builder.lines.insert(tr.Line('L1', 'Line', 'N', 'M'))
		self.assertEqual(builder.corresponding('trips', ['T1', 'T2'], 'lines'), ['L1'])

	def test_prio_queue(self):
		queue = trel.PrioQueue(op.itemgetter(0))
		for v in [(3, 'c'), (1, 'a'), (2, 'b')]: queue.push(v)
		self.assertEqual(len(queue), 3)
		self.assertEqual(queue.peek(), (1, 'a'))
		self.assertEqual(list(queue.pop()[1] for n in range(3)), ['a', 'b', 'c'])

	def test_dot_for_relations(self):
		dst = io.StringIO()
		c.tn.vis.dot_for_relations(dst, c.NetworkFixture().model())
		dot = dst.getvalue()
		self.assertTrue(dot.startswith('digraph {'))
		self.assertIn('"trips" -> "stop_points" [label="stop_times[].stop_point_id", weight=1.9]', dot)
		self.assertIn('"ticket_use_perimeters" -> "lines" [label="object_id", style=dotted]', dot)
		self.assertIn('records: 4', dot)


if __name__ == '__main__': unittest.main()
