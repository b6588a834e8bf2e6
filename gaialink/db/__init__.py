"""Database interaction code and utilities.

SQLAlchemy tricks (as with `gaialink_cli.py shell`):

```python
>>> s = get_session().__enter__()
>>> ds = s.execute(sa.select(sch.DataSource).limit(1)).scalar()
# Variables registered for this data source, loaded lazily
>>> ds.variables.all()
# Geometry tables already linked, and their variables
>>> g = s.execute(sa.select(sch.GeomIndex).limit(1)).scalar()
>>> [a.variable_name for a in g.attrs]
```
"""
