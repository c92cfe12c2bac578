### Typed collections: position-keyed and identifier-keyed record containers

import itertools as it, operator as op, functools as ft

from .. import utils as u


class StoreError(Exception): pass

class DuplicateIdentifier(StoreError):
	def __init__(self, kind, ident):
		self.kind, self.ident = kind, ident
		super(DuplicateIdentifier, self).__init__(
			'Identifier {!r} already exists in {}'.format(ident, kind) )

class ReadOnlyError(StoreError): pass


class Collection:
	'''Ordered container for records of one kind, addressed by positional index.
		Index is assigned on insertion and never reused within collection lifetime,
			removal leaves a tombstone in its place. Only compacted() copies renumber.
		Watchers are called as watcher(op, idx, record) on every change,
			with op being one of "insert", "remove" or "update".'''

	def __init__(self, kind, records=None):
		self.kind, self.set_idx, self.frozen = kind, list(), False
		self.watchers, self._len = list(), 0
		for record in records or list(): self.push(record)

	def __repr__(self):
		return '<{} {} [{:,}]>'.format(self.__class__.__name__, self.kind, len(self))

	def __getstate__(self):
		state = dict(vars(self))
		state['watchers'] = list() # attached relations re-attach themselves
		return state

	def _check_writable(self):
		if self.frozen:
			raise ReadOnlyError('Collection {} is read-only (validated model)'.format(self.kind))

	def _notify(self, op, idx, record):
		for watcher in self.watchers: watcher(op, idx, record)

	def push(self, record):
		self._check_writable()
		idx = len(self.set_idx)
		self.set_idx.append(record)
		self._len += 1
		self._notify('insert', idx, record)
		return idx

	def get_by_index(self, idx):
		if not 0 <= idx < len(self.set_idx): return
		return self.set_idx[idx]

	def remove_index(self, idx):
		self._check_writable()
		record = self.get_by_index(idx)
		if record is None: raise IndexError(idx)
		self.set_idx[idx] = None
		self._len -= 1
		self._notify('remove', idx, record)
		return record

	def update_index(self, idx, mutator=None, **changes):
		'''Replace record at idx with mutator(record) result and/or its copy with changed fields.
			Mutator must return a replacement record, e.g. one made via attr.evolve().
			Records are immutable, so previous one can still be shared with other collections.'''
		self._check_writable()
		record = self.get_by_index(idx)
		if record is None: raise IndexError(idx)
		record_new = record if mutator is None else mutator(record)
		if record_new is None:
			raise StoreError('Update of {} record did not return a replacement: {!r}'.format(self.kind, record))
		if changes: record_new = u.attr.evolve(record_new, **changes)
		self._check_replacement(record, record_new)
		self.set_idx[idx] = record_new
		self._notify('update', idx, record_new)
		return record_new

	def _check_replacement(self, record, record_new):
		if record_new.__class__ is not record.__class__:
			raise StoreError( 'Record type change on update'
				' ({}): {!r} -> {!r}'.format(self.kind, record, record_new) )

	def retain(self, func):
		'Remove all records for which func(record) is false, return number of removed ones.'
		removed = 0
		for idx, record in list(self.items()):
			if func(record): continue
			self.remove_index(idx)
			removed += 1
		return removed

	def items(self):
		'(idx, record) tuples in insertion order, skipping removed records.'
		for idx, record in enumerate(self.set_idx):
			if record is not None: yield idx, record

	def freeze(self):
		self.frozen = True
		return self

	def copy(self):
		'Writable copy, sharing records and preserving indexes.'
		coll = self.__class__.__new__(self.__class__)
		coll.__dict__.update(vars(self))
		coll.set_idx, coll.watchers, coll.frozen = list(self.set_idx), list(), False
		return coll

	def compacted(self):
		'Writable copy without tombstones, i.e. with records renumbered from 0.'
		return self.__class__(self.kind, iter(self))

	def __getitem__(self, idx):
		record = self.get_by_index(idx)
		if record is None: raise IndexError(idx)
		return record
	def __len__(self): return self._len
	def __iter__(self): return map(op.itemgetter(1), self.items())


class CollectionWithId(Collection):
	'''Collection where each record is also uniquely addressed by its "id" attribute.
		Uniqueness is enforced on every insertion.'''

	def __init__(self, kind, records=None):
		self.idx_id = dict()
		super(CollectionWithId, self).__init__(kind, records)

	def copy(self):
		coll = super(CollectionWithId, self).copy()
		coll.idx_id = self.idx_id.copy()
		return coll

	def insert(self, record):
		self._check_writable()
		if record.id in self.idx_id: raise DuplicateIdentifier(self.kind, record.id)
		self.idx_id[record.id] = len(self.set_idx)
		return super(CollectionWithId, self).push(record)

	push = insert

	def get_idx(self, ident): return self.idx_id.get(ident)
	index_of = get_idx

	def get_by_id(self, ident):
		idx = self.idx_id.get(ident)
		if idx is None: return
		return self.set_idx[idx]

	def remove(self, ident):
		self._check_writable()
		idx = self.idx_id.get(ident)
		if idx is None: raise KeyError(ident)
		del self.idx_id[ident]
		return super(CollectionWithId, self).remove_index(idx)

	def remove_index(self, idx):
		record = self.get_by_index(idx)
		if record is None: raise IndexError(idx)
		return self.remove(record.id)

	def update(self, ident, mutator=None, **changes):
		'Replace record with specified id, keeping its id and index unchanged, see update_index().'
		idx = self.idx_id.get(ident)
		if idx is None: raise KeyError(ident)
		return self.update_index(idx, mutator, **changes)

	def _check_replacement(self, record, record_new):
		super(CollectionWithId, self)._check_replacement(record, record_new)
		if record_new.id != record.id:
			raise StoreError( 'Identifier change on update ({}):'
				' {!r} -> {!r}'.format(self.kind, record.id, record_new.id) )

	def ids(self): return map(op.attrgetter('id'), self)

	def __contains__(self, ident): return ident in self.idx_id
	def __getitem__(self, ident): return self.set_idx[self.idx_id[ident]]
