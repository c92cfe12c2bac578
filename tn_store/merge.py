### Merging of several validated models into one

import itertools as it, operator as op, functools as ft
from collections import defaultdict

from . import utils as u
from .types.collection import StoreError
from .types.records import KINDS, content_key
from .store import Collections, Model, StoreConf


class MergeCollision(StoreError): pass


def merge(models, tags=None, conf=None, timer_func=None, log=u.get_logger('tn.merge')):
	'''Merge validated models into a new one, which is validated before being returned.
		Each model with non-None tag has all its ids prefixed by it first.
		Value-like (dedup) kinds are deduplicated by content, with references rewritten
			to first such record in source order, other records are added in source order.
		Position-keyed records (e.g. transfers) equal to one from an earlier source are skipped.
		Same id with different content in several sources is only allowed
			if all of these are tagged (i.e. shared tag), first source wins then.
		Raises MergeCollision on tag/model count mismatch or untagged id collision,
			ValidationFailed if result is not a consistent model.
		Input models are never modified.'''
	models = list(models)
	if not models: raise ValueError('No models to merge')
	tags = list(tags) if tags is not None else [None] * len(models)
	if len(tags) != len(models):
		raise MergeCollision('Source tags ({}) do not match number of models ({})'.format(
			len(tags), len(models) ))
	for model in models:
		if not isinstance(model, Model): raise TypeError('Only validated models can be merged', model)
	conf = conf or models[0].conf or StoreConf()

	sources = list()
	for model, tag in zip(models, tags):
		if tag is not None:
			model = model.builder()
			model.add_prefix(tag, conf.prefix_sep)
		sources.append(model)

	dst = Collections(conf)
	id_maps = list(defaultdict(dict) for src in sources) # source -> kind -> {old: new}
	owners = defaultdict(dict) # kind -> id -> source index

	def add_record(n, kind, coll, record):
		if record.id not in coll:
			coll.insert(record)
			owners[kind.name][record.id] = n
			return True
		m = owners[kind.name][record.id]
		if coll[record.id] == record: return
		if tags[n] is None or tags[m] is None:
			raise MergeCollision(( 'Identifier {!r} in {} from model #{} collides'
				' with different record from model #{}' ).format(record.id, kind.name, n, m))
		log.warning( 'Different {} records with same id {!r} in'
			' models #{} and #{}, using first one', kind.name, record.id, m, n )

	def remap_refs(n, kind, record):
		id_map = id_maps[n]
		if not id_map: return record
		for ref in kind.refs:
			ref_map = id_map.get(ref.target_for(record))
			if ref_map and any(v in ref_map for field, v in ref.values(record)): break
		else: return record
		for ref in kind.refs:
			ref_map = id_map.get(ref.target_for(record))
			if ref_map: record = ref.rewrite(record, lambda v, ref_map=ref_map: ref_map.get(v, v))
		return record

	def merge_dedup(kind):
		coll, seen, dropped = dst.collection(kind.name), dict(), 0
		for n, src in enumerate(sources):
			for record in src.collection(kind.name):
				key = content_key(record)
				if key in seen:
					if seen[key] != record.id: id_maps[n][kind.name][record.id] = seen[key]
					dropped += 1
					continue
				if add_record(n, kind, coll, record): seen[key] = record.id
		return dropped

	def merge_union(kind):
		coll, seen, dropped = dst.collection(kind.name), dict(), 0 # seen: key -> source index
		for n, src in enumerate(sources):
			for record in src.collection(kind.name):
				record = remap_refs(n, kind, record)
				if kind.keyed:
					add_record(n, kind, coll, record)
					continue
				# Exact copies from different sources are dropped, ones within same source are kept
				key = u.freeze(record)
				if seen.setdefault(key, n) != n:
					dropped += 1
					continue
				coll.push(record)
		return dropped

	# Dedup kinds first, as other kinds in any position can reference them
	for kind in it.chain(
			filter(op.attrgetter('dedup'), KINDS),
			it.filterfalse(op.attrgetter('dedup'), KINDS) ):
		dropped = (merge_dedup if kind.dedup else merge_union)(kind)
		log.debug( 'Merged {}: {:,} record(s){}', kind.name, len(dst.collection(kind.name)),
			'' if not dropped else ' ({:,} duplicate(s) dropped)'.format(dropped) )

	for src in sources:
		for k, v in src.feed_infos.items(): dst.feed_infos.setdefault(k, v)

	model = Model(dst, conf, timer_func=timer_func)
	log.info('Merged {:,} model(s): {}', len(models), model.stats_line())
	return model
