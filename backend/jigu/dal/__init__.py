"""
Jigu Server: Data Access Layer
==============================

What:  Thin async wrappers around MongoDB collections.
How:   BaseDAL implements the generic CRUD operations once; one subclass per
       collection adds its own queries.

DAL Inventory:
    - BaseDAL:    find_all, find_by_id, find_one, create, update_by_id,
                  delete_by_id, count
    - ScriptsDAL: search_by_name, search_by_content, find_latest_updated
"""

from jigu.dal.base import BaseDAL
from jigu.dal.scripts import ScriptsDAL

__all__ = ["BaseDAL", "ScriptsDAL"]
