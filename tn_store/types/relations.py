### Relation indexes over identifier references and relation graph traversal

import itertools as it, operator as op, functools as ft
from collections import namedtuple, defaultdict, OrderedDict
import heapq

from .. import utils as u
from . import records as tr
from .collection import CollectionWithId


@u.attr_struct(eq=False)
@ft.total_ordering
class PrioItem:
	prio = u.attr_init()
	value = u.attr_init()

	def __hash__(self): return hash(self.prio)
	def __eq__(self, item): return self.prio == item.prio
	def __lt__(self, item): return self.prio < item.prio
	def __iter__(self): return iter((self.prio, self.value))

	@classmethod
	def get_factory(cls, attr_args):
		'''Returns factory to create PrioItem by extracting
				specified prio attrs (or extractor func, if callable) from values.'''
		if isinstance(attr_args, str): attr_args = attr_args.split()
		if len(attr_args) == 1:
			if isinstance(attr_args[0], str): attr_args = attr_args[0].split()
			elif callable(attr_args[0]): attr_args = attr_args[0]
		if not callable(attr_args): attr_args = op.attrgetter(*attr_args)
		return lambda v: cls(attr_args(v), v)

class PrioQueue:
	def __init__(self, *prio_attrs):
		self.items, self.item_func = list(), PrioItem.get_factory(prio_attrs)
	def __len__(self): return len(self.items)
	def push(self, value): heapq.heappush(self.items, self.item_func(value))
	def pop(self): return heapq.heappop(self.items).value
	def peek(self): return self.items[0].value



class RelationIndex:
	'''Derived source-id -> ordered target-ids mapping for one reference field,
			and target-id -> set-of-source-ids reverse mapping.
		Sources without "id" (e.g. transfers) are identified by their collection index.
		Does not own any records, can be rebuilt from source collection at any point.
		With watch=True, gets updated incrementally on every source collection change.'''

	def __init__(self, name, source, ref, watch=False):
		self.name, self.source, self.ref = name, source, ref
		self.keyed = isinstance(source, CollectionWithId)
		self.forward, self.reverse = dict(), dict()
		self.rebuild()
		if watch: source.watchers.append(self.on_change)

	def __repr__(self):
		return '<RelationIndex {} [{:,} -> {:,}]>'.format(
			self.name, len(self.forward), len(self.reverse) )

	def source_id(self, idx, record): return record.id if self.keyed else idx

	def rebuild(self):
		self.forward.clear()
		self.reverse.clear()
		for idx, record in self.source.items(): self.add(idx, record)

	def add(self, idx, record):
		source_id = self.source_id(idx, record)
		targets = self.forward[source_id] = tuple(self.ref.ids(record))
		for target_id in targets:
			self.reverse.setdefault(target_id, set()).add(source_id)

	def discard(self, source_id):
		for target_id in self.forward.pop(source_id, ()):
			sources = self.reverse[target_id]
			sources.discard(source_id)
			if not sources: del self.reverse[target_id]

	def refresh(self, idx, record):
		self.discard(self.source_id(idx, record))
		self.add(idx, record)

	def on_change(self, op, idx, record):
		if op == 'insert': self.add(idx, record)
		elif op == 'remove': self.discard(self.source_id(idx, record))
		elif op == 'update': self.refresh(idx, record)
		else: raise ValueError(op)

	def related_to(self, source_id):
		return list(self.forward.get(source_id, ()))

	def referencing(self, target_id):
		'Source ids (or indexes) referencing target, ordered by their source collection index.'
		return sorted( self.reverse.get(target_id, ()),
			key=self.source.get_idx if self.keyed else None )

	def __eq__(self, rel):
		if not isinstance(rel, RelationIndex): return NotImplemented
		return self.forward == rel.forward and self.reverse == rel.reverse



def relation_name(kind, ref):
	return '{}.{}'.format(kind.name, ref.field)

def relation_specs(kind_list=None):
	'''Yields (name, kind, ref) for every reference that can be indexed,
		i.e. one with a fixed target kind.'''
	for kind in u.init_if_none(kind_list, tr.KINDS):
		for ref in kind.refs:
			if ref.polymorphic: continue
			yield relation_name(kind, ref), kind, ref

@ft.lru_cache()
def relation_spec(name):
	for spec in relation_specs():
		if spec[0] == name: return spec
	raise KeyError('Unknown relation: {}'.format(name))


RelationEdge = namedtuple('RelationEdge', 'src dst relation forward weight')

def relation_graph(kind_list=None):
	'Kind name -> list of RelationEdge, both directions for weighted references.'
	graph = defaultdict(list)
	for name, kind, ref in relation_specs(kind_list):
		if ref.weight is None: continue
		graph[kind.name].append(RelationEdge(kind.name, ref.target, name, True, ref.weight))
		graph[ref.target].append(RelationEdge(ref.target, kind.name, name, False, ref.weight))
	return graph

@ft.lru_cache()
def kind_path(src, dst):
	'''Cheapest tuple of RelationEdge leading from src to dst kind,
		empty tuple for src == dst, or None if these are not connected.'''
	graph, seen = relation_graph(), set()
	queue = PrioQueue(op.itemgetter(0))
	queue.push((0, src, ()))
	while queue:
		cost, kind, path = queue.pop()
		if kind == dst: return path
		if kind in seen: continue
		seen.add(kind)
		for edge in graph.get(kind, list()):
			if edge.dst in seen: continue
			queue.push((cost + edge.weight, edge.dst, path + (edge,)))

def walk_path(path, ids, relation_func):
	'Set of ids reachable from passed ones along path, with relation_func(name) -> RelationIndex.'
	ids = set(ids)
	for edge in path:
		rel = relation_func(edge.relation)
		step = rel.related_to if edge.forward else rel.referencing
		ids = set(it.chain.from_iterable(map(step, ids)))
	return ids
