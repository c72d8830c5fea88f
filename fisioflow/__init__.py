"""
FisioFlow: physiotherapy clinic management backend.

Structure:
- config.py        : environment settings and logging setup
- db.py            : SQLAlchemy engine and sessions
- models.py        : ORM models and enums (auth_models.py for users)
- cache.py         : Redis read-through cache
- patients.py      : patients, pain logs, SOAP sessions
- scheduling.py    : staff, appointments, waitlist, reminders
- notifications.py : outbound queue and WhatsApp gateway
- billing.py       : transactions, receivables, payables
- crm.py           : leads, scoring, funnel
- gamification.py  : points, levels, badges, leaderboard
- telemedicine.py  : video consultations
- insurance.py     : insurance plans and TISS guides
- nps.py           : satisfaction surveys
- reports.py       : income statement, cash flow, dashboard
- seed.py          : reference data
- api_main.py      : FastAPI app (routers/ holds the endpoints)
- cli.py           : command line tools
"""
