RHO0 = 1025.     #: reference density of seawater
GRAVITY = 9.81   #: gravitational acceleration
OMEGA = 2.0 * 3.141592653589793 / 86164.0  #: rotation rate of the Earth (sidereal day)

CENTERS = 1
INTERFACES = 2

FILL_VALUE = -2e20
