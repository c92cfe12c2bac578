# Visualization tools, mostly useful for debugging

import itertools as it, operator as op, functools as ft
import contextlib

from .types import records as tr


print_fmt = lambda tpl, *a, file=None, end='\n', **k:\
	print(tpl.format(*a,**k), file=file, end=end)

dot_str = lambda n: '"{}"'.format(n.replace('"', '\\"'))
dot_html = lambda n: '<{}>'.format(n)


@contextlib.contextmanager
def dot_graph(dst, dot_opts, indent=2):
	print_fmt('digraph {{', file=dst)
	if isinstance(indent, int): indent = ' '*indent
	p = lambda tpl, *a, end='\n', **k:\
		print_fmt(indent + tpl, *a, file=dst, end=end, **k)
	p('### Defaults')
	for t, opts in (dot_opts or dict()).items():
		p('{} [ {} ]'.format(t, ', '.join('{}={}'.format(k, v) for k, v in opts.items())))
	yield p
	print_fmt('}}', file=dst)


def dot_for_relations(dst, store=None, dot_opts=None):
	'''Graph of record kinds and references between them.
		Optional references are dashed, polymorphic ones dotted,
			weight labels are set on references used to find corresponding records.
		Record counts are added to labels if store (builder or model) is passed.'''
	dot_opts = dot_opts or dict()
	dot_opts.setdefault('graph', dict()).setdefault('rankdir', 'LR')
	dot_opts.setdefault('node', dict()).setdefault('shape', 'box')
	with dot_graph(dst, dot_opts) as p:

		p('')
		p('### Labels')
		for kind in tr.KINDS:
			label = '<b>{}</b><br/>{}{}{}'.format( kind.name, kind.orphans.value,
				' dedup' if kind.dedup else '', ' sanitize' if kind.sanitize else '' )
			if store is not None:
				label += '<br/>records: {:,}'.format(len(store.collection(kind.name)))
			p('{} [label={}]'.format(dot_str(kind.name), dot_html(label)))

		p('')
		p('### Edges')
		for kind in tr.KINDS:
			for ref in kind.refs:
				targets = [ref.target] if not ref.polymorphic else sorted(set(filter(None, (
					ref.target(rec) for rec in polymorphic_samples(kind) ))))
				attrs = ['label={}'.format(dot_str(ref.field if not ref.item
					else '{}[].{}'.format(ref.field, ref.item) ))]
				if ref.polymorphic: attrs.append('style=dotted')
				elif ref.optional: attrs.append('style=dashed')
				if ref.weight is not None: attrs.append('weight={:g}'.format(ref.weight))
				for target in targets:
					p('{} -> {} [{}]', dot_str(kind.name), dot_str(target), ', '.join(attrs))


def polymorphic_samples(kind):
	'Records for every possible value of fields that select polymorphic reference target.'
	if kind.record is tr.TicketUsePerimeter:
		for obj_type in tr.ObjectType: yield tr.TicketUsePerimeter(None, obj_type, None)
	elif kind.record is tr.TicketUseRestriction:
		for res_type in tr.RestrictionType: yield tr.TicketUseRestriction(None, res_type, None, None)
