from datetime import datetime

from flask import Blueprint, request, jsonify, current_app

from ..db import SessionLocal
from ..models import Employee, Job, Assignment
from ..utils.quote_utils import clean_text, to_id, to_int
from .auth_helpers import token_required

crew_bp = Blueprint('crew', __name__)

ASSIGNMENT_REQUIRED_FIELDS = ('employeeId', 'name', 'email', 'jobId', 'shift', 'startDate')


@crew_bp.route('/employees', methods=['GET'])
@token_required
def get_employees():
    session = SessionLocal()
    try:
        employees = (
            session.query(Employee)
            .filter(Employee.active.is_(True))
            .order_by(Employee.name.asc())
            .all()
        )
        return jsonify({'employees': [e.to_dict() for e in employees]})
    except Exception as e:
        current_app.logger.error(f"Error fetching employees: {e}")
        return jsonify({'error': 'Failed to fetch employees.'}), 500
    finally:
        session.close()


@crew_bp.route('/jobs', methods=['GET'])
@token_required
def get_jobs():
    shift = clean_text(request.args.get('shift'))
    location = clean_text(request.args.get('location'))

    session = SessionLocal()
    try:
        query = session.query(Job)
        if shift:
            query = query.filter(Job.shift == shift)
        if location:
            query = query.filter(Job.location == location)
        jobs = query.order_by(Job.start_date.asc(), Job.id.asc()).all()
        return jsonify({'jobs': [j.to_dict() for j in jobs]})
    except Exception as e:
        current_app.logger.error(f"Error fetching jobs: {e}")
        return jsonify({'error': 'Failed to fetch jobs.'}), 500
    finally:
        session.close()


@crew_bp.route('/assignments', methods=['GET', 'POST'])
@token_required
def handle_assignments():
    # -------------------- POST --------------------
    if request.method == 'POST':
        data = request.get_json(silent=True)
        if data is None:
            data = request.form.to_dict()
        if not isinstance(data, dict):
            return jsonify({'success': False, 'error': 'Invalid request body'}), 400

        session = SessionLocal()
        try:
            job = session.get(Job, clean_text(data.get('jobId')))
            if job:
                # Shift and start date fall back to the job's own values
                if not clean_text(data.get('shift')):
                    data['shift'] = job.shift
                if not clean_text(data.get('startDate')) and job.start_date:
                    data['startDate'] = job.start_date.isoformat()

            missing = [f for f in ASSIGNMENT_REQUIRED_FIELDS if not clean_text(data.get(f))]
            if missing:
                return jsonify({'success': False, 'error': 'Please complete all required fields.', 'missing': missing}), 400
            if not job:
                return jsonify({'success': False, 'error': 'Job not found'}), 404

            employee = session.get(Employee, to_id(data.get('employeeId')))
            if not employee:
                return jsonify({'success': False, 'error': 'Employee not found'}), 404

            try:
                start_date = datetime.strptime(clean_text(data['startDate']), '%Y-%m-%d').date()
            except ValueError:
                return jsonify({'success': False, 'error': 'startDate must be YYYY-MM-DD'}), 400

            assignment = Assignment(
                employee_id=employee.id,
                job_id=job.id,
                name=clean_text(data['name']),
                email=clean_text(data['email']),
                project=job.project,
                shift=clean_text(data['shift']),
                start_date=start_date,
                notes=clean_text(data.get('notes')),
            )
            session.add(assignment)
            session.commit()

            current_app.logger.info(f"Assignment {assignment.id}: {employee.name} on job {job.id}")
            return jsonify({'success': True, 'assignment': assignment.to_dict()}), 201

        except Exception as e:
            session.rollback()
            current_app.logger.exception(f"Error creating assignment: {e}")
            return jsonify({'success': False, 'error': 'Failed to save assignment'}), 500
        finally:
            session.close()

    # -------------------- GET --------------------
    limit = min(max(1, to_int(request.args.get('limit'), 8)), 100)
    session = SessionLocal()
    try:
        assignments = (
            session.query(Assignment)
            .order_by(Assignment.submitted_at.desc(), Assignment.id.desc())
            .limit(limit)
            .all()
        )
        return jsonify({'assignments': [a.to_dict() for a in assignments]})
    except Exception as e:
        current_app.logger.error(f"Error fetching assignments: {e}")
        return jsonify({'error': 'Failed to fetch assignments.'}), 500
    finally:
        session.close()
