"""Department catalogue and validation for the assign-task form."""
from datetime import date

DEFAULT_HOD = 'Department HOD'

DEPARTMENT_HODS = {
    'Mandir': 'Komal Sahu and Rinku Gautam',
    'Main Gate': 'Komal Sahu and Rinku Gautam',
    'Main Gate Front Area': 'Komal Sahu and Rinku Gautam',
    'Admin Office - Ground Floor': 'Moradhwaj Verma and Shivraj Sharma',
    'Admin Office - First Floor': 'Moradhwaj Verma and Shivraj Sharma',
    'Cabins ग्राउंड फ्लोर: and first floor': 'Moradhwaj Verma and Shivraj Sharma',
    'Weight Office & Kata In/Out': 'Vipin Pandey & Rajendra Tiwari',
    'New Lab': 'Mukesh Patle & Sushil',
    'Canteen Area 1 & 2': 'Tuleshwar Verma',
    'Labour Colony & Bathroom': 'Tuleshwar Verma',
    'Plant Area': 'Tuleshwar Verma',
    'Pipe Mill': 'Ravi Kumar Singh, G. Ram Mohan Rao, Hullash Paswan',
    'Patra Mill Foreman Office': 'Sparsh Jha and Toman Sahu',
    'Patra Mill DC Panel Room': 'Danveer Singh Chauhan',
    'Patra Mill AC Panel Room': 'Danveer Singh Chauhan',
    'SMS Panel Room': 'Deepak Bhalla',
    'SMS Office': 'Baldev Singh',
    'CCM Office': 'Rinku Singh',
    'CCM Panel Room': 'Rinku Singh',
    'Store Office': 'Pramod and Suraj',
    'Workshop': 'Dhanji Yadav',
    'Car Parking Area': DEFAULT_HOD,
}

ALL_DEPARTMENTS = [
    'Mandir',
    'Car Parking Area',
    'Main Gate',
    'Main Gate Front Area',
    'Admin Office - Ground Floor',
    'Cabins ग्राउंड फ्लोर: and first floor',
    'Admin Office - First Floor',
    'Weight Office & Kata In/Out',
    'New Lab',
    'Canteen Area 1 & 2',
    'Pipe Mill',
    'Patra Mill Foreman Office',
    'Patra Mill DC Panel Room',
    'Patra Mill AC Panel Room',
    'SMS Panel Room',
    'SMS Office',
    'CCM Office',
    'CCM Panel Room',
    'Store Office',
    'Workshop',
    'Labour Colony & Bathroom',
    'Plant Area',
]

GIVEN_BY_OPTIONS = ['AAKASH AGRAWAL', 'SHEELESH MARELE', 'AJIT KUMAR GUPTA']
DOER_NAMES = ['Housekeeping Staff', 'Company Reja']
FREQUENCIES = ['one-time', 'daily', 'weekly', 'monthly']

FORM_FIELDS = ('department', 'given_by', 'name', 'task_description',
               'frequency', 'task_start_date', 'hod')


def hod_for(department):
    return DEPARTMENT_HODS.get(department, DEFAULT_HOD)


def _is_user(role):
    return (role or '').lower() == 'user'


def departments_for(role, department=None):
    """Plain users with a department only get to pick their own."""
    if _is_user(role) and department:
        return [d for d in ALL_DEPARTMENTS if d == department]
    return list(ALL_DEPARTMENTS)


def _valid_date(value):
    try:
        date.fromisoformat(str(value).strip()[:10])
        return True
    except ValueError:
        return False


def validate_assignment(form):
    """Return the first validation error, or '' when the form is usable."""
    if not (form.get('department') or '').strip():
        return 'Department is required'
    if not (form.get('task_description') or '').strip():
        return 'Task description is required'
    frequency = (form.get('frequency') or '').strip()
    if not frequency:
        return 'Frequency is required'
    if frequency not in FREQUENCIES:
        return f"Frequency must be one of {', '.join(FREQUENCIES)}"
    start = (form.get('task_start_date') or '').strip()
    if not start:
        return 'Start date is required'
    if not _valid_date(start):
        return 'Start date must be a valid date (YYYY-MM-DD)'
    return ''


def build_assignment(form, role=None, department=None):
    payload = {field: (form.get(field) or '').strip() for field in FORM_FIELDS}
    if _is_user(role) and department:
        payload['department'] = department
    if payload['department']:
        payload['hod'] = hod_for(payload['department'])
    return payload


def blank_assignment(role=None, department=None):
    """Empty form state; users keep their department and HOD pre-filled."""
    form = {field: '' for field in FORM_FIELDS}
    if _is_user(role) and department:
        form['department'] = department
        form['hod'] = hod_for(department)
    return form
