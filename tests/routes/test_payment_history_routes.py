"""Route tests for doctor and patient payment history."""

from clinipay.core.enums import AppointmentStatus, PaymentStatus


class TestDoctorPaymentHistory:
    def test_doctor_lists_own_payments_in_camel_case(
        self, client, auth_headers, doctor, doctor_user, make_appointment, make_payment
    ):
        appointment = make_appointment(status=AppointmentStatus.CONFIRMED.value)
        payment = make_payment(appointment)

        response = client.get(f"/api/v1/doctors/{doctor.id}/payments", headers=auth_headers(doctor_user))

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["id"] == payment.id
        assert data[0]["appointmentId"] == appointment.id
        assert data[0]["doctorPayoutAmount"] == "95.00"
        assert data[0]["appointmentStatus"] == AppointmentStatus.CONFIRMED.value
        assert data[0]["refundType"] is None
        assert data[0]["createdAt"] is not None
        assert data[0]["appointmentStartsAt"] is not None

    def test_admin_may_read_any_doctor(
        self, client, auth_headers, doctor, admin_user, make_appointment, make_payment
    ):
        make_payment(make_appointment())

        response = client.get(f"/api/v1/doctors/{doctor.id}/payments", headers=auth_headers(admin_user))

        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_patient_is_forbidden(self, client, auth_headers, doctor, patient_user):
        response = client.get(f"/api/v1/doctors/{doctor.id}/payments", headers=auth_headers(patient_user))
        assert response.status_code == 403

    def test_unknown_doctor(self, client, auth_headers, admin_user):
        response = client.get("/api/v1/doctors/missing/payments", headers=auth_headers(admin_user))
        assert response.status_code == 404

    def test_requires_authentication(self, client, doctor):
        assert client.get(f"/api/v1/doctors/{doctor.id}/payments").status_code == 401


class TestPatientPaymentHistory:
    def test_patient_sees_only_own_payments(
        self, client, auth_headers, patient_user, other_patient, make_appointment, make_payment
    ):
        mine = make_payment(make_appointment(), status=PaymentStatus.PENDING.value)
        make_payment(make_appointment(patient=other_patient))

        response = client.get("/api/v1/patients/payments", headers=auth_headers(patient_user))

        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data] == [mine.id]
        assert data[0]["status"] == PaymentStatus.PENDING.value
        assert data[0]["patientPaid"] is False

    def test_doctor_has_no_patient_history(self, client, auth_headers, doctor_user):
        response = client.get("/api/v1/patients/payments", headers=auth_headers(doctor_user))
        assert response.status_code == 403
