from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

from pedsim.core.constants import SYSTOLIC_ALERT_THRESHOLDS
from pedsim.core.state import Vitals


@dataclass(frozen=True)
class Alert:
    key: str       # monitored parameter, e.g. 'SpO2'
    level: str     # critical, urgent or advisory
    message: str

    def __str__(self) -> str:
        return self.message


def generate_alerts(vitals: Vitals, condition: str = "default") -> List[Alert]:
    """
    PALS-style alerts for a single snapshot.

    At most one alert per parameter; the most severe matching rule wins.
    `condition` selects the shock thresholds and the opioid-specific
    bradycardia/bradypnea rules.
    """
    alerts = []
    opioid = condition == "opioid_toxicity"

    if vitals.spo2 < 88:
        alerts.append(Alert("SpO2", "critical", "CRITICAL: Severe hypoxemia - Consider intubation"))
    elif vitals.spo2 < 92:
        alerts.append(Alert("SpO2", "urgent", "URGENT: Hypoxemia detected - Increase oxygen support"))
    elif vitals.spo2 < 95:
        alerts.append(Alert("SpO2", "advisory", "SpO2 declining - Monitor airway closely"))

    thresholds = SYSTOLIC_ALERT_THRESHOLDS.get(condition, SYSTOLIC_ALERT_THRESHOLDS["default"])
    if vitals.blood_pressure_sys < thresholds.critical:
        alerts.append(Alert("SBP", "critical", "CRITICAL: Hypotensive shock - Immediate intervention required"))
    elif vitals.blood_pressure_sys < thresholds.urgent:
        alerts.append(Alert("SBP", "urgent", "URGENT: Hypotension developing - Consider fluid resuscitation"))

    hr = vitals.heart_rate
    if opioid:
        if hr < 60:
            alerts.append(Alert("HR", "critical", "CRITICAL: Severe bradycardia - Consider CPR"))
        elif hr < 80:
            alerts.append(Alert("HR", "urgent", "URGENT: Bradycardia detected - Monitor closely"))
    elif hr > 180:
        alerts.append(Alert("HR", "critical", "CRITICAL: Severe tachycardia - Consider cardiovascular instability"))
    elif hr > 160:
        alerts.append(Alert("HR", "urgent", "URGENT: Significant tachycardia - Assess underlying cause"))
    elif hr > 140:
        alerts.append(Alert("HR", "advisory", "Tachycardia developing - Monitor trends"))

    rr = vitals.resp_rate
    if opioid:
        if rr < 10:
            alerts.append(Alert("RR", "critical", "CRITICAL: Severe respiratory depression - Consider bag-mask ventilation"))
        elif rr < 15:
            alerts.append(Alert("RR", "urgent", "URGENT: Respiratory depression - Prepare for airway support"))
    elif rr > 45:
        alerts.append(Alert("RR", "critical", "CRITICAL: Severe respiratory distress - Consider ventilatory support"))
    elif rr > 35:
        alerts.append(Alert("RR", "urgent", "URGENT: Significant tachypnea - Assess work of breathing"))
    elif rr > 28:
        alerts.append(Alert("RR", "advisory", "Respiratory rate elevated - Monitor closely"))

    # Celsius equivalents of 105 F, 103 F and 96 F.
    temp = vitals.temperature
    if temp > 40.5:
        alerts.append(Alert("Temp", "critical", "CRITICAL: Hyperthermia - Risk of organ dysfunction"))
    elif temp > 39.4:
        alerts.append(Alert("Temp", "urgent", "URGENT: High fever - Consider cooling measures"))
    elif temp < 35.6 and (condition == "sepsis" or opioid):
        alerts.append(Alert("Temp", "urgent", "URGENT: Hypothermia - Sign of severe illness"))

    crt = vitals.capillary_refill
    if crt is not None:
        if crt > 4.0:
            alerts.append(Alert("CRT", "critical", "CRITICAL: Severely delayed capillary refill - Poor perfusion"))
        elif crt > 3.0:
            alerts.append(Alert("CRT", "urgent", "URGENT: Delayed capillary refill - Assess circulation"))

    return alerts


class AlarmSystem:
    """
    Sustained-alert filter for one session's monitor.

    An alert is reported only once its parameter has been alerting for the
    whole delay window.
    """
    def __init__(self, condition: str = "default", delays: dict = None, dt: float = 1.0):
        self.condition = condition

        # Default Delays (seconds)
        self.delays = {
            'SpO2': 5,
            'SBP': 0,
            'HR': 0,
            'RR': 0,
            'Temp': 0,
            'CRT': 0,
        }
        if delays:
            self.delays.update(delays)

        self.dt = dt

        # Recent alerting flags per parameter
        self.buffers = {
            name: deque(maxlen=self._window_len(delay))
            for name, delay in self.delays.items()
        }

        self.active_alarms: Dict[str, Alert] = {}

    def _window_len(self, delay_sec: float) -> int:
        """Window length in samples for a given delay."""
        return max(1, int(delay_sec / self.dt))

    def update(self, vitals: Vitals, dt: Optional[float] = None) -> List[Alert]:
        """Feed one snapshot and return the alerts that are now sustained."""
        if dt is not None and dt > 0 and dt != self.dt:
            self.dt = dt
        current = {alert.key: alert for alert in generate_alerts(vitals, self.condition)}
        sustained = {}

        for name, delay_sec in self.delays.items():
            window_len = self._window_len(delay_sec)
            buf = self.buffers.get(name)
            if buf is None or buf.maxlen != window_len:
                buf = self.buffers[name] = deque(maxlen=window_len)
            buf.append(name in current)

            # Condition must hold for the ENTIRE window.
            if len(buf) >= window_len and all(buf):
                sustained[name] = current[name]

        self.active_alarms = sustained
        return list(sustained.values())
