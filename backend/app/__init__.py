"""
Urban Tree Server Backend
=========================

This is the Python package for the backend API.

HOW IT'S ORGANIZED:
------------------
- models/    = Data structures (what does a tree / reading / import job look like?)
- services/  = Workers (parse workbooks, write to the database, crunch summaries)
- routers/   = API endpoints (the doors into our app)
- utils/     = Small helpers for cleaning up spreadsheet values
- errors.py  = Exceptions the services raise on purpose
- main.py    = Puts it all together and starts the server
"""
