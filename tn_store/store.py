import itertools as it, operator as op, functools as ft
from collections import namedtuple, defaultdict, OrderedDict
from concurrent.futures import ThreadPoolExecutor
import types

from . import utils as u
from .types.collection import StoreError
from .types.records import KINDS, kinds, OrphanPolicy
from .types.relations import RelationIndex, relation_specs, relation_spec, kind_path, walk_path


@u.attr_struct(vals_to_attrs=True)
class StoreConf:
	relation_workers = 1 # threads to build relation indexes with on validation
	loader_workers = None # None - thread per loader in Collections.populate()
	prefix_sep = ':'
	log_violations_max = 20


class IntegrityViolation(namedtuple('IntegrityViolation', 'kind identifier field target')):
	'''Reference that does not resolve - record kind, its id (or position),
		field name (e.g. "stop_times[2].stop_point_id") and missing target id,
		which is None for unset required reference.'''
	__slots__ = ()
	def __str__(self):
		return '{}[{!r}].{} -> {}'.format( self.kind, self.identifier,
			self.field, 'unset' if self.target is None else repr(self.target) )

class ValidationFailed(StoreError):
	def __init__(self, violations):
		self.violations = list(violations)
		super(ValidationFailed, self).__init__(
			'Validation failed with {:,} integrity violation(s)'.format(len(self.violations)) )

class OrphanPolicyViolation(StoreError):
	def __init__(self, orphans):
		self.orphans = list(orphans)
		super(OrphanPolicyViolation, self).__init__(
			'Orphaned records of kind(s) that must not be orphaned: {}'.format(
				', '.join(sorted(set(v.kind for v in self.orphans))) ) )

class LoaderConflict(StoreError): pass


@u.attr_struct
class PruneReport:
	removed = u.attr_init(OrderedDict) # kind -> list of removed ids (or positions)
	unlinked = u.attr_init(list) # IntegrityViolation for each unset optional reference

	@property
	def total(self): return sum(map(len, self.removed.values()))

	def add_removed(self, kind, idents):
		if idents: self.removed.setdefault(kind, list()).extend(idents)

	def __bool__(self): return bool(self.total or self.unlinked)


Loader = namedtuple('Loader', 'kinds func')


def timer(self_or_func, func=None, *args, **kws):
	'Calculation call wrapper for timer/progress logging.'
	if not func: return lambda s,*a,**k: s.timer_wrapper(self_or_func, s, *a, **k)
	return self_or_func.timer_wrapper(func, *args, **kws)


class StoreBase:
	'Read access to named collections, common for builder and validated model.'

	def __getattr__(self, name):
		if name.startswith('_') or name not in kinds: raise AttributeError(name)
		return self._colls[name]

	def collection(self, name):
		if name not in kinds: raise KeyError('Unknown collection: {}'.format(name))
		return self._colls[name]

	def collections(self):
		'(kind, collection) tuples in kind registry order.'
		return ((kind, self._colls[kind.name]) for kind in KINDS)

	def related_to(self, relation, source_id):
		return self.relation(relation).related_to(source_id)

	def referencing(self, relation, target_id):
		return self.relation(relation).referencing(target_id)

	def corresponding(self, from_kind, ids, to_kind):
		'''Ids of to_kind records related to from_kind ones with specified ids,
				following cheapest path of navigable relations between these kinds,
				e.g. stop areas -> physical modes of trips stopping there.
			Returned ids are ordered by their collection index.'''
		path = kind_path(from_kind, to_kind)
		if path is None:
			raise StoreError('No relation path between kinds: {} -> {}'.format(from_kind, to_kind))
		src, dst = self.collection(from_kind), self.collection(to_kind)
		ids = walk_path(path, (ident for ident in ids if ident in src), self.relation)
		# Builder can have references to records that are not loaded yet
		return sorted((ident for ident in ids if ident in dst), key=dst.get_idx)

	def violations(self):
		'''List of IntegrityViolation for every unresolved reference in every record.
			Does not stop on first found, reporting all of them in kind/insertion order.'''
		violations = list()
		for kind, coll in self.collections():
			for idx, record in coll.items():
				ident = kind.ident(idx, record)
				for ref in kind.refs:
					target = ref.target_for(record)
					if target is None: continue
					target_coll = self._colls[target]
					for field, target_id in ref.values(record):
						if target_id is None:
							if not ref.optional:
								violations.append(IntegrityViolation(kind.name, ident, field, None))
						elif target_id not in target_coll:
							violations.append(IntegrityViolation(kind.name, ident, field, target_id))
		return violations

	def referenced_ids(self):
		'Kind name -> set of ids referenced by anything in the store.'
		used = defaultdict(set)
		for kind, coll in self.collections():
			for record in coll:
				for ref in kind.refs:
					target = ref.target_for(record)
					if target: used[target].update(ref.ids(record))
		return used

	def stats(self):
		stats = OrderedDict((kind.name, len(coll)) for kind, coll in self.collections())
		stats['feed_infos'] = len(self.feed_infos)
		return stats

	def log_violations(self, violations, log):
		log.warning('Integrity check failed: {:,} violation(s)', len(violations))
		n = self.conf.log_violations_max
		lines = list(map(str, violations[:n]))
		if len(violations) > n: lines.append('... {:,} more'.format(len(violations) - n))
		u.log_lines(log.warning, lines)



class Collections(StoreBase):
	'''Model builder - mutable set of collections with relaxed referential integrity.
		Loaders are free to insert records in any order and with forward references,
			and closure is only checked on validate(), which produces a Model.
		Not synchronized, use view()/populate() to load disjoint collections in parallel.'''

	def __init__(self, conf=None, colls=None, feed_infos=None):
		self.conf, self.log = conf or StoreConf(), u.get_logger('tn.store')
		colls = colls or dict()
		self._colls = OrderedDict(
			(kind.name, kind.new_collection() if colls.get(kind.name) is None else colls[kind.name])
			for kind in KINDS )
		self.feed_infos = OrderedDict(feed_infos or dict())
		self._relations = dict()

	def __repr__(self):
		return '<Collections [{}]>'.format(', '.join(
			'{}={:,}'.format(name, n) for name, n in self.stats().items() if n ))

	def __getstate__(self):
		state = dict(vars(self))
		state['_relations'] = dict() # re-created on demand
		return state

	def relation(self, name):
		'''Relation index, created on first access and then
			updated incrementally on every change of its source collection.'''
		rel = self._relations.get(name)
		if not rel:
			name, kind, ref = relation_spec(name)
			rel = self._relations[name] = RelationIndex(name, self._colls[kind.name], ref, watch=True)
		return rel

	def validate(self, timer_func=None):
		'Returns validated Model or raises ValidationFailed with all integrity violations.'
		return Model(self, timer_func=timer_func)


	def _find_orphans(self):
		'''Returns (gone, errors) - records to drop as
				kind -> set of idents and OrphanPolicyViolation records.
			Cascades drops until fixpoint - e.g. route -> its trips -> their frequencies.'''
		gone, errors = defaultdict(set), OrderedDict()
		def ref_missing(record, ref):
			target = ref.target_for(record)
			if target is None: return
			target_coll = self._colls[target]
			for field, target_id in ref.values(record):
				if target_id is None or target_id not in target_coll\
						or target_id in gone[target]:
					return field, target_id
		while True:
			changes = False
			for kind, coll in self.collections():
				if kind.orphans is OrphanPolicy.root: continue
				for idx, record in coll.items():
					ident = kind.ident(idx, record)
					if ident in gone[kind.name] or (kind.name, ident) in errors: continue
					for ref in kind.refs:
						if ref.optional: continue
						missing = ref_missing(record, ref)
						if missing: break
					else: continue
					if kind.orphans is OrphanPolicy.error:
						errors[kind.name, ident] = IntegrityViolation(kind.name, ident, *missing)
					else:
						gone[kind.name].add(ident)
						changes = True
			if not changes: break
		return gone, list(errors.values())

	def prune_orphans(self):
		'''Drop records of "drop"-policy kinds that have unresolvable required references,
				cascading to fixpoint, and unlink dangling optional references.
			Raises OrphanPolicyViolation without changing anything
				if any record of "error"-policy kind is orphaned.
			Returns PruneReport.'''
		gone, errors = self._find_orphans()
		if errors:
			self.log_violations(errors, self.log)
			raise OrphanPolicyViolation(errors)
		report = PruneReport()
		for kind, coll in self.collections():
			idents = gone.get(kind.name)
			if not idents: continue
			idents = sorted(idents, key=coll.get_idx if kind.keyed else None)
			for ident in idents:
				if kind.keyed: coll.remove(ident)
				else: coll.remove_index(ident)
			report.add_removed(kind.name, idents)

		for kind, coll in self.collections():
			for idx, record in list(coll.items()):
				dangling = list()
				for ref in kind.refs:
					if not ref.optional: continue
					target_coll = self._colls[ref.target_for(record)]
					for field, target_id in ref.values(record):
						if target_id is None or target_id in target_coll: continue
						dangling.append((ref, target_id))
						report.unlinked.append(
							IntegrityViolation(kind.name, kind.ident(idx, record), field, target_id) )
				if not dangling: continue
				def unlink(record, dangling=dangling):
					for ref, target_id in dangling: record = ref.unlink(record, target_id)
					return record
				coll.update_index(idx, unlink)

		if report:
			self.log.info( 'Pruned orphans: {} (unlinked optional references: {:,})',
				', '.join('{}={:,}'.format(k, len(v)) for k, v in report.removed.items()) or 'none',
				len(report.unlinked) )
		return report

	def sanitize(self):
		'''Prune orphans, then remove records of sanitizable kinds
			that are not referenced by anything, until there are no such records left.'''
		report = self.prune_orphans()
		while True:
			used, removed = self.referenced_ids(), 0
			for kind, coll in self.collections():
				if not kind.sanitize: continue
				unused = list(ident for ident in coll.ids() if ident not in used[kind.name])
				for ident in unused: coll.remove(ident)
				report.add_removed(kind.name, unused)
				removed += len(unused)
			if not removed: break
			self.log.debug('Sanitize pass removed {:,} unused record(s)', removed)
		self.log.info('Sanitized model: {:,} record(s) removed', report.total)
		return report

	def add_prefix(self, prefix, sep=None):
		'''Prefix ids of all keyed records and all references to them.
			Records are replaced with prefixed copies,
				so that collections are renumbered and relations are re-created.'''
		sep = u.init_if_none(sep, self.conf.prefix_sep)
		prefixed = lambda ident: '{}{}{}'.format(prefix, sep, ident)
		for kind, coll in list(self.collections()):
			records = list()
			for record in coll:
				if kind.keyed: record = u.attr.evolve(record, id=prefixed(record.id))
				for ref in kind.refs: record = ref.rewrite(record, prefixed)
				records.append(record)
			self._colls[kind.name] = kind.new_collection(records)
		self._relations.clear()
		self.log.debug('Added prefix {!r} to all identifiers', prefix + sep)

	def update_dataset_validity(self):
		'''Set validity period of all datasets to
			earliest/latest calendar dates, returning (start, end) or None.'''
		dates = list(it.chain.from_iterable(cal.dates for cal in self.calendars))
		if not dates: return
		start, end = min(dates), max(dates)
		for dataset_id in list(self.datasets.ids()):
			self.datasets.update(dataset_id, start_date=start, end_date=end)
		return start, end

	def view(self, *kind_names):
		return CollectionsView(self, kind_names)

	def populate(self, *loaders, workers=None):
		'''Run Loader(kinds, func) tasks, each with func(view) getting
				a view restricted to its specified collections, returning list of results.
			Loaders are run in threads, unless workers=1, so must have disjoint kind sets.'''
		owners = dict()
		for loader in loaders:
			for name in CollectionsView.kind_list(loader.kinds):
				if name in owners:
					raise LoaderConflict('Collection {} claimed by several loaders: {!r}, {!r}'.format(
						name, owners[name].func, loader.func ))
				owners[name] = loader
		workers = u.init_if_none(workers, self.conf.loader_workers) or len(loaders)
		tasks = list((loader.func, self.view(*CollectionsView.kind_list(loader.kinds))) for loader in loaders)
		if workers <= 1 or len(tasks) <= 1:
			return list(func(view) for func, view in tasks)
		with ThreadPoolExecutor(max_workers=workers) as executor:
			futures = list(executor.submit(func, view) for func, view in tasks)
			return list(future.result() for future in futures)


class CollectionsView:
	'Builder proxy allowing access only to specified collections.'

	@staticmethod
	def kind_list(kind_names):
		if isinstance(kind_names, str): kind_names = kind_names.split()
		return list(kind_names)

	def __init__(self, builder, kind_names):
		kind_names = self.kind_list(kind_names)
		for name in kind_names:
			if name not in kinds: raise KeyError('Unknown collection: {}'.format(name))
		self._builder, self._kinds = builder, frozenset(kind_names)

	def __repr__(self): return '<CollectionsView [{}]>'.format(' '.join(sorted(self._kinds)))

	def collection(self, name):
		if name not in self._kinds:
			raise LoaderConflict('Collection {} is outside of loader view: {}'.format(
				name, ', '.join(sorted(self._kinds)) ))
		return self._builder.collection(name)

	def __getattr__(self, name):
		if name.startswith('_'): raise AttributeError(name)
		if name not in kinds:
			raise AttributeError('Collections view has no attribute: {}'.format(name))
		return self.collection(name)



class Model(StoreBase):
	'''Validated read-only transit network model.
		All references are guaranteed to resolve, collections are compacted and frozen,
			relation indexes are built for every reference that can be indexed.
		Use builder() to get a mutable copy-on-write Collections seeded from it.'''

	def __init__(self, collections, conf=None, timer_func=None):
		self.conf, self.log = conf or collections.conf, u.get_logger('tn.store')
		self.timer_wrapper = timer_func if timer_func else lambda f,*a,**k: f(*a,**k)

		violations = self.timer_wrapper(collections.violations)
		if violations:
			collections.log_violations(violations, self.log)
			raise ValidationFailed(violations)

		self._colls = OrderedDict(
			(kind.name, coll.compacted().freeze()) for kind, coll in collections.collections() )
		self._feed_infos = OrderedDict(collections.feed_infos)
		self._relations = self.build_relations()
		self.log.debug('Validated model: {}', self.stats_line())

	def __repr__(self): return '<Model [{}]>'.format(self.stats_line())

	def __getstate__(self):
		state = dict(vars(self))
		for k in 'timer_wrapper', '_relations': del state[k]
		return state

	def __setstate__(self, state):
		self.__dict__.update(state)
		self.timer_wrapper = lambda f,*a,**k: f(*a,**k)
		self._relations = self.build_relations()

	@property
	def feed_infos(self): return types.MappingProxyType(self._feed_infos)

	def stats_line(self):
		return ', '.join('{}={:,}'.format(name, n) for name, n in self.stats().items() if n) or 'empty'

	@timer
	def build_relations(self):
		specs = list(relation_specs())
		build = lambda spec: RelationIndex(spec[0], self._colls[spec[1].name], spec[2])
		workers = self.conf.relation_workers or 1
		if workers <= 1: relations = list(map(build, specs))
		else:
			with ThreadPoolExecutor(max_workers=workers) as executor:
				relations = list(executor.map(build, specs))
		return OrderedDict((rel.name, rel) for rel in relations)

	def relation(self, name):
		rel = self._relations.get(name)
		if not rel: raise KeyError('Unknown relation: {}'.format(name))
		return rel

	def relations(self): return self._relations.values()

	def builder(self):
		'Mutable Collections sharing (immutable) records with this model, which stays unchanged.'
		return Collections( self.conf,
			dict((name, coll.copy()) for name, coll in self._colls.items()), self._feed_infos )



def filter_networks( model, action, network_ids,
		timer_func=None, log=u.get_logger('tn.store') ):
	'''Returns new Model with only specified networks (action=extract)
			or without them (action=remove), and their lines, routes and trips,
			with everything that is no longer used removed from it.'''
	if action not in ['extract', 'remove']: raise ValueError(action)
	network_ids = list(network_ids)
	unknown = list(n for n in network_ids if n not in model.networks)
	if unknown: raise StoreError('Unknown network id(s): {}'.format(', '.join(unknown)))
	drop = set(network_ids) if action == 'remove'\
		else set(model.networks.ids()).difference(network_ids)

	builder = model.builder()
	for kind in 'trips', 'routes', 'lines', 'networks':
		idents = model.corresponding('networks', drop, kind)
		for ident in idents: builder.collection(kind).remove(ident)
		log.debug('Filter ({}): removing {:,} {}', action, len(idents), kind)
	builder.sanitize()
	return builder.validate(timer_func=timer_func)
